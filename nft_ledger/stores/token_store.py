"""
token_store.py - Registry of Minted Tokens

TokenStore is the source of truth for "who owns token X" and "what is token
X's metadata". Token indices are dense: the index of a new token is the
number of tokens minted before it, and the record is appended in the same
step, so an index can never be assigned twice.

Tokens are never removed and their metadata never changes. Ownership
changes only through set_owner(), which the Ledger calls during transfer.
"""

from __future__ import annotations
from typing import Iterator, List

from ..core import (
    Principal, TokenIndex, TokenRecord, MetadataDesc,
    NotFound,
)


class TokenStore:
    """
    Dense, append-only list of TokenRecord.

    Implements the OwnershipView protocol via owner_of_index().
    """

    def __init__(self):
        self._records: List[TokenRecord] = []

    def mint(self, owner: Principal, metadata_desc: MetadataDesc) -> TokenIndex:
        """
        Store a new token owned by owner and return its index.

        Args:
            owner: Principal receiving the token
            metadata_desc: Immutable metadata descriptor

        Returns:
            The new token index (equal to count() before the call)
        """
        token_index = len(self._records)
        self._records.append(TokenRecord.issue(token_index, owner, metadata_desc))
        return token_index

    def get(self, token_index: TokenIndex) -> TokenRecord:
        """
        Get the record of a minted token.

        Raises:
            NotFound: If token_index was never minted
        """
        if isinstance(token_index, bool) or not isinstance(token_index, int):
            raise NotFound(f"Token {token_index!r} not found")
        if token_index < 0 or token_index >= len(self._records):
            raise NotFound(f"Token {token_index} not found")
        return self._records[token_index]

    def owner_of_index(self, token_index: TokenIndex) -> Principal:
        return self.get(token_index).principal

    def set_owner(self, token_index: TokenIndex, new_owner: Principal) -> TokenRecord:
        """
        Replace a token's owner and recompute its account identifier.

        Internal to the Ledger: callers must have validated the transfer
        and must update the OwnerIndex in the same operation.

        Returns:
            The updated record
        """
        updated = self.get(token_index).with_owner(new_owner)
        self._records[token_index] = updated
        return updated

    def count(self) -> int:
        """Total number of minted tokens (monotonic)."""
        return len(self._records)

    def records(self) -> List[TokenRecord]:
        """All records in index order."""
        return list(self._records)

    def copy(self) -> TokenStore:
        # Records are frozen, so a shallow copy of the list is independent.
        cloned = TokenStore()
        cloned._records = list(self._records)
        return cloned

    @classmethod
    def restore(cls, records: List[TokenRecord]) -> TokenStore:
        """
        Rebuild a store from previously persisted records.

        Raises:
            ValueError: If record indices are not exactly 0..n-1 in order
        """
        for position, record in enumerate(records):
            if record.index != position:
                raise ValueError(f"Token records not dense: expected index {position}, got {record.index}")
        store = cls()
        store._records = list(records)
        return store

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, token_index: object) -> bool:
        return (
            isinstance(token_index, int)
            and not isinstance(token_index, bool)
            and 0 <= token_index < len(self._records)
        )

    def __iter__(self) -> Iterator[TokenRecord]:
        return iter(list(self._records))

    def __repr__(self) -> str:
        return f"TokenStore({len(self._records)} tokens)"
