"""
owner_index.py - Reverse Index from Owner to Token Indices

OwnerIndex maps each User to the ordered set of token indices it holds.
It is derived from TokenStore but maintained incrementally so balance and
enumeration queries never scan the whole registry.

Invariants:
    - Every minted token appears under exactly one user, the token's owner.
    - A user's set never contains duplicates.
    - A user with no tokens has no entry at all.
"""

from __future__ import annotations
from typing import Dict, Iterator, List, Tuple

from ..core import User, TokenIndex, report_invariant_violation


class OwnerIndex:
    """
    Incrementally maintained mapping User -> ordered set of TokenIndex.

    Each set is an insertion-ordered dict with None values, which keeps
    add/remove/contains O(1) while preserving receipt order.
    """

    def __init__(self):
        self._entries: Dict[User, Dict[TokenIndex, None]] = {}

    def add(self, owner: User, token_index: TokenIndex) -> None:
        """
        Record that owner holds token_index, creating the entry if absent.

        Raises:
            InvariantViolation: If owner already holds token_index
        """
        entry = self._entries.setdefault(owner, {})
        if token_index in entry:
            raise report_invariant_violation(
                f"token {token_index} already indexed under {owner}"
            )
        entry[token_index] = None

    def remove(self, owner: User, token_index: TokenIndex) -> None:
        """
        Remove token_index from owner's set, dropping the entry when it empties.

        Raises:
            InvariantViolation: If owner does not hold token_index
        """
        entry = self._entries.get(owner)
        if entry is None or token_index not in entry:
            raise report_invariant_violation(
                f"token {token_index} not indexed under {owner}"
            )
        del entry[token_index]
        if not entry:
            del self._entries[owner]

    def contains(self, owner: User, token_index: TokenIndex) -> bool:
        return token_index in self._entries.get(owner, {})

    def tokens_of(self, owner: User) -> Tuple[TokenIndex, ...]:
        """Token indices held by owner, in receipt order (empty if none)."""
        return tuple(self._entries.get(owner, ()))

    def balance_of(self, owner: User) -> int:
        return len(self._entries.get(owner, ()))

    def owners(self) -> List[User]:
        """All users currently holding at least one token."""
        return list(self._entries)

    def items(self) -> Iterator[Tuple[User, Tuple[TokenIndex, ...]]]:
        for owner, entry in list(self._entries.items()):
            yield owner, tuple(entry)

    def copy(self) -> OwnerIndex:
        cloned = OwnerIndex()
        cloned._entries = {owner: dict(entry) for owner, entry in self._entries.items()}
        return cloned

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"OwnerIndex({len(self._entries)} owners)"
