"""
ledger.py - Stateful NFT Registry and Listing Ledger

The Ledger class is the central state manager of the NFT ledger. It is the
only component allowed to touch more than one store, which keeps the
TokenStore and OwnerIndex in agreement and validates every ListingBook
operation against current TokenStore ownership.

Key responsibilities:
    - Mints tokens and keeps TokenStore and OwnerIndex consistent
    - Transfers tokens with all preconditions checked before any mutation
    - Lists and delists tokens for sale against live ownership
    - Serves DIP-721 style ownership and metadata queries
    - Tracks logical time and records an audit trail (clone, replay)
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from .core import (
    # Types
    Principal, AccountIdentifier, User,
    TokenIndex, TokenIdentifier, TokenRecord,
    MetadataPart, MetadataDesc, Listing, MintReceipt,
    ExtendedMetadataResult, LedgerEvent,
    # Constants
    DEFAULT_EPOCH, TOKEN_UNIT_COUNT,
    EVENT_MINT, EVENT_TRANSFER, EVENT_LIST, EVENT_DELIST,
    # Exceptions
    NFTLedgerError, NotFound, Unauthorized, InvalidArgument, RECOVERABLE_ERRORS,
    report_invariant_violation,
    # Helper functions
    as_metadata_desc, into_token_index,
)
from .stores import TokenStore, OwnerIndex, ListingBook


class Ledger:
    """
    NFT registry, reverse owner index and listing book behind one facade.

    Every public operation validates all of its preconditions first and only
    then mutates the stores, so a raised NotFound, Unauthorized,
    InvalidArgument, AlreadyListed or NotListed always leaves the ledger
    unchanged. InvariantViolation signals an internal defect.

    Thread Safety:
        Not thread-safe. Operations assume a single writer that runs each
        call to completion before starting the next.

    Example:
        ledger = Ledger("main")
        alice, bob = Principal("alice"), Principal("bob")

        receipt = ledger.mint_nft(alice, [MetadataPart(MetadataPurpose.RENDERED)])
        ledger.transfer(User.from_principal(alice), User.from_principal(bob), "0")
        ledger.list(bob, "0", 100)
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        clear_listings_on_transfer: bool = True,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Print applied and rejected operations (default: True)
            clear_listings_on_transfer: Remove a token's active listing when the
                token is transferred (default: True)
        """
        self.name = name
        self.verbose = verbose
        self.clear_listings_on_transfer = clear_listings_on_transfer
        self._tokens = TokenStore()
        self._owners = OwnerIndex()
        self._listings = ListingBook()
        self.event_log: List[LedgerEvent] = []
        self._initial_time: datetime = initial_time or DEFAULT_EPOCH
        self._current_time: datetime = self._initial_time
        self._next_sequence: int = 0

    # ========================================================================
    # STORES (read access for inspection and tests)
    # ========================================================================

    @property
    def token_store(self) -> TokenStore:
        return self._tokens

    @property
    def owner_index(self) -> OwnerIndex:
        return self._owners

    @property
    def listing_book(self) -> ListingBook:
        return self._listings

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    @property
    def initial_time(self) -> datetime:
        return self._initial_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock to a new time.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # MINT & TRANSFER (Mutating)
    # ========================================================================

    def mint_nft(self, to: Principal, metadata_desc: Iterable[MetadataPart]) -> MintReceipt:
        """
        Mint a new token owned by `to`.

        The token record and the owner-index entry are written together; the
        index slot is checked before the record is created so the second
        write cannot fail after the first.

        Args:
            to: Principal receiving the token
            metadata_desc: Metadata parts, frozen into an immutable descriptor

        Returns:
            MintReceipt with the new token id and a unit count of 1

        Raises:
            InvalidArgument: If `to` is not a Principal or the metadata is malformed
        """
        try:
            owner = self._expect_principal(to, "to")
            try:
                desc = as_metadata_desc(metadata_desc)
            except (TypeError, ValueError) as e:
                raise InvalidArgument(f"Malformed metadata descriptor: {e}") from e
        except RECOVERABLE_ERRORS as e:
            self._reject("mint", e)
            raise

        owner_key = User.from_principal(owner)
        next_index = self._tokens.count()
        if self._owners.contains(owner_key, next_index):
            raise report_invariant_violation(
                f"unminted token {next_index} already indexed under {owner}"
            )

        token_index = self._tokens.mint(owner, desc)
        self._owners.add(owner_key, token_index)

        self._record(EVENT_MINT, token_index, {'to': owner})
        return MintReceipt(token_id=token_index, id=TOKEN_UNIT_COUNT)

    def transfer(
        self,
        from_user: User,
        to_user: User,
        token_identifier: Union[TokenIdentifier, TokenIndex],
    ) -> None:
        """
        Move a token from its current owner to another principal.

        Checks performed before any mutation:
        1. Token exists (NotFound)
        2. from_user denotes the token's current owner (Unauthorized)
        3. to_user is a principal user (InvalidArgument)
        4. The owner index agrees with the token store for both the current
           and the new owner (InvariantViolation)

        Then, as one unit: set the new owner in the TokenStore, move the index
        entry in the OwnerIndex and, if configured, clear any active listing.
        A transfer to the current owner is recorded but changes no store.

        Raises:
            NotFound, Unauthorized, InvalidArgument, InvariantViolation
        """
        try:
            self._expect_user(from_user, "from_user")
            self._expect_user(to_user, "to_user")
            token_index = into_token_index(token_identifier)
            record = self._tokens.get(token_index)
            if not from_user.identifies(record.principal, record.account_identifier):
                raise Unauthorized(f"Token {token_index} not owned by {from_user}")
            new_owner = to_user.expect_principal()
        except RECOVERABLE_ERRORS as e:
            self._reject("transfer", e)
            raise

        previous_key = User.from_principal(record.principal)
        new_key = User.from_principal(new_owner)
        if not self._owners.contains(previous_key, token_index):
            raise report_invariant_violation(
                f"token {token_index} owned by {record.principal} but not indexed under it"
            )
        if new_key != previous_key and self._owners.contains(new_key, token_index):
            raise report_invariant_violation(
                f"token {token_index} owned by {record.principal} but also indexed under {new_owner}"
            )

        # A transfer to the current owner leaves every store untouched,
        # including the token's position in the owner's list and its listing.
        cleared: Optional[Listing] = None
        if new_owner != record.principal:
            self._tokens.set_owner(token_index, new_owner)
            self._owners.remove(previous_key, token_index)
            self._owners.add(new_key, token_index)
            if self.clear_listings_on_transfer:
                cleared = self._listings.discard(token_index)

        self._record(EVENT_TRANSFER, token_index, {
            'from_owner': record.principal,
            'to_owner': new_owner,
            'cleared_listing': cleared,
        })

    # ========================================================================
    # LISTINGS (Mutating)
    # ========================================================================

    def list(
        self,
        caller: Principal,
        token_identifier: Union[TokenIdentifier, TokenIndex],
        price: int,
    ) -> bool:
        """
        List a token for sale at a fixed price.

        Ownership is read from the TokenStore at call time.

        Returns:
            True on success

        Raises:
            NotFound, Unauthorized, InvalidArgument (price <= 0), AlreadyListed
        """
        try:
            seller = self._expect_principal(caller, "caller")
            token_index = into_token_index(token_identifier)
            listing = self._listings.list(self._tokens, seller, token_index, price, self._current_time)
        except RECOVERABLE_ERRORS as e:
            self._reject("list", e)
            raise

        self._record(EVENT_LIST, token_index, {'seller': listing.seller, 'price': listing.price})
        return True

    def delist(
        self,
        caller: Principal,
        token_identifier: Union[TokenIdentifier, TokenIndex],
    ) -> bool:
        """
        Remove the active listing of a token.

        Returns:
            True on success

        Raises:
            NotFound, Unauthorized, NotListed
        """
        try:
            principal = self._expect_principal(caller, "caller")
            token_index = into_token_index(token_identifier)
            removed = self._listings.delist(self._tokens, principal, token_index)
        except RECOVERABLE_ERRORS as e:
            self._reject("delist", e)
            raise

        self._record(EVENT_DELIST, token_index, {'caller': principal, 'price': removed.price})
        return True

    def active_listing(self, token_identifier: Union[TokenIdentifier, TokenIndex]) -> Optional[Listing]:
        """
        Get the active listing of a token, or None if it is not listed.

        Raises:
            NotFound: If the token does not exist
        """
        token_index = self._tokens.get(into_token_index(token_identifier)).index
        return self._listings.active_listing_for(token_index)

    def listings(self) -> List[Listing]:
        """All active listings in creation order."""
        return self._listings.listings()

    # ========================================================================
    # QUERIES (read-only)
    # ========================================================================

    def total_supply(self) -> int:
        """Number of tokens ever minted."""
        return self._tokens.count()

    def supply(self, token_identifier: Union[TokenIdentifier, TokenIndex]) -> int:
        """
        Supply of a single token: always 1 for a minted non-fungible token.

        Raises:
            NotFound: If the token does not exist
        """
        self._record_for(token_identifier)
        return TOKEN_UNIT_COUNT

    def owner_of(self, token_identifier: Union[TokenIdentifier, TokenIndex]) -> Principal:
        """Current owner principal of a token. Raises NotFound."""
        return self._record_for(token_identifier).principal

    def bearer(self, token_identifier: Union[TokenIdentifier, TokenIndex]) -> AccountIdentifier:
        """Account identifier of a token's current owner. Raises NotFound."""
        return self._record_for(token_identifier).account_identifier

    def metadata(self, token_identifier: Union[TokenIdentifier, TokenIndex]) -> MetadataDesc:
        """
        Metadata descriptor of a token, addressed by token identifier.

        Tokens carry a single metadata descriptor, so this returns the same
        value as get_metadata(), which is addressed by numeric token id.

        Raises:
            NotFound: If the token does not exist
        """
        return self._record_for(token_identifier).metadata_desc

    def get_metadata(self, token_id: TokenIndex) -> MetadataDesc:
        """Metadata descriptor of a token by numeric id. Raises NotFound."""
        return self._record_for(token_id).metadata_desc

    def get_token(self, token_identifier: Union[TokenIdentifier, TokenIndex]) -> TokenRecord:
        """Full stored record of a token. Raises NotFound."""
        return self._record_for(token_identifier)

    def balance_of(self, user: Union[User, Principal]) -> int:
        """
        Number of tokens held by a user (0 if none).

        Owner-index entries are keyed by principal users; an account-form
        user has no entry of its own and always reports 0.
        """
        return self._owners.balance_of(self._owner_key(user))

    def get_token_ids_for_user(self, user: Union[User, Principal]) -> List[int]:
        """Token ids held by a user, in receipt order (empty if none)."""
        return list(self._owners.tokens_of(self._owner_key(user)))

    def get_metadata_for_user(self, user: Union[User, Principal]) -> List[ExtendedMetadataResult]:
        """(metadata descriptor, token id) for every token a user holds."""
        return [
            ExtendedMetadataResult(metadata_desc=record.metadata_desc, token_id=record.index)
            for record in self._records_for_user(user)
        ]

    def get_all_metadata_for_user(self, user: Union[User, Principal]) -> List[TokenRecord]:
        """Full token records for every token a user holds."""
        return self._records_for_user(user)

    # ========================================================================
    # CONSISTENCY
    # ========================================================================

    def verify_consistency(self) -> Dict[str, Any]:
        """
        Check that the three stores agree with each other.

        Checks:
        - Every token is indexed under exactly its recorded owner
        - Every account identifier matches its owner's derivation
        - The owner index has no empty entries and names only minted tokens
        - Every listing names a minted token whose owner is the seller

        Returns:
            Dict with keys:
            - 'valid': bool - True if no discrepancy was found
            - 'token_count': int - Number of minted tokens
            - 'discrepancies': List[Dict] - One entry per problem found

        Example:
            result = ledger.verify_consistency()
            assert result['valid'], result['discrepancies']
        """
        discrepancies: List[Dict[str, Any]] = []

        for record in self._tokens:
            owner_key = User.from_principal(record.principal)
            if not self._owners.contains(owner_key, record.index):
                discrepancies.append({
                    'token': record.index,
                    'owner': str(record.principal),
                    'error': 'token missing from owner index',
                })
            if record.account_identifier != AccountIdentifier.from_principal(record.principal):
                discrepancies.append({
                    'token': record.index,
                    'owner': str(record.principal),
                    'error': 'stale account identifier',
                })

        indexed_by: Dict[TokenIndex, User] = {}
        for owner, indices in self._owners.items():
            if not indices:
                discrepancies.append({'owner': str(owner), 'error': 'empty owner index entry'})
            for token_index in indices:
                if token_index in indexed_by:
                    discrepancies.append({
                        'token': token_index,
                        'owner': str(owner),
                        'error': f'token also indexed under {indexed_by[token_index]}',
                    })
                indexed_by[token_index] = owner
                if token_index not in self._tokens:
                    discrepancies.append({
                        'token': token_index,
                        'owner': str(owner),
                        'error': 'owner index names unminted token',
                    })
                elif owner != User.from_principal(self._tokens.owner_of_index(token_index)):
                    discrepancies.append({
                        'token': token_index,
                        'owner': str(owner),
                        'error': 'token indexed under a non-owner',
                    })

        for listing in self._listings.listings():
            if listing.token_index not in self._tokens:
                discrepancies.append({
                    'token': listing.token_index,
                    'error': 'listing names unminted token',
                })
            elif listing.seller != self._tokens.owner_of_index(listing.token_index):
                discrepancies.append({
                    'token': listing.token_index,
                    'seller': str(listing.seller),
                    'error': 'stale listing: seller no longer owns token',
                })

        return {
            'valid': len(discrepancies) == 0,
            'token_count': self._tokens.count(),
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create an independent copy of this ledger.

        Cloned state includes all three stores, the event log, the clock and
        configuration. Mutating the clone never affects the original.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned.verbose = self.verbose
        cloned.clear_listings_on_transfer = self.clear_listings_on_transfer
        cloned._tokens = self._tokens.copy()
        cloned._owners = self._owners.copy()
        cloned._listings = self._listings.copy()
        # Events are frozen, so sharing them is safe
        cloned.event_log = list(self.event_log)
        cloned._initial_time = self._initial_time
        cloned._current_time = self._current_time
        cloned._next_sequence = self._next_sequence
        return cloned

    def replay(self) -> Ledger:
        """
        Create a new ledger by re-executing the event log from the start.

        The replayed ledger has the same tokens, owner index and listings as
        this one. Events are re-applied through the public operations, so
        every precondition is checked again.

        Raises:
            NFTLedgerError: If an event cannot be re-applied
        """
        new_ledger = Ledger(
            name=f"{self.name}_replayed",
            initial_time=self._initial_time,
            verbose=self.verbose,
            clear_listings_on_transfer=self.clear_listings_on_transfer,
        )

        for event in self.event_log:
            if event.timestamp > new_ledger.current_time:
                new_ledger.advance_time(event.timestamp)
            params = event.params_dict
            try:
                if event.kind == EVENT_MINT:
                    # Metadata never changes after mint, so the token store is its only copy
                    metadata_desc = self._tokens.get(event.token_index).metadata_desc
                    receipt = new_ledger.mint_nft(params['to'], metadata_desc)
                    if receipt.token_id != event.token_index:
                        raise NFTLedgerError(
                            f"Replay minted token {receipt.token_id}, expected {event.token_index}"
                        )
                elif event.kind == EVENT_TRANSFER:
                    new_ledger.transfer(
                        User.from_principal(params['from_owner']),
                        User.from_principal(params['to_owner']),
                        event.token_index,
                    )
                elif event.kind == EVENT_LIST:
                    new_ledger.list(params['seller'], event.token_index, params['price'])
                elif event.kind == EVENT_DELIST:
                    new_ledger.delist(params['caller'], event.token_index)
                else:
                    raise NFTLedgerError(f"Unknown event kind {event.kind}")
            except RECOVERABLE_ERRORS as e:
                raise NFTLedgerError(f"Replay failed at event #{event.sequence_number}: {e}") from e

        return new_ledger

    def to_snapshot(self) -> Dict[str, Any]:
        """Versioned, JSON-compatible snapshot of the full ledger state."""
        from .snapshot import to_snapshot
        return to_snapshot(self)

    @classmethod
    def from_snapshot(cls, snapshot: Dict[str, Any], verbose: bool = False) -> Ledger:
        """Restore a ledger from to_snapshot() output. Raises SnapshotError."""
        from .snapshot import from_snapshot
        return from_snapshot(snapshot, verbose=verbose)

    # ========================================================================
    # INTERNAL HELPERS
    # ========================================================================

    def _record_for(self, token_identifier: Union[TokenIdentifier, TokenIndex]) -> TokenRecord:
        return self._tokens.get(into_token_index(token_identifier))

    def _records_for_user(self, user: Union[User, Principal]) -> List[TokenRecord]:
        records = []
        for token_index in self._owners.tokens_of(self._owner_key(user)):
            try:
                records.append(self._tokens.get(token_index))
            except NotFound:
                raise report_invariant_violation(
                    f"owner index lists unminted token {token_index} under {user}"
                )
        return records

    @staticmethod
    def _owner_key(user: Union[User, Principal]) -> User:
        if isinstance(user, User):
            return user
        if isinstance(user, Principal):
            return User.from_principal(user)
        raise InvalidArgument(f"Expected User or Principal, got {type(user).__name__}")

    @staticmethod
    def _expect_principal(value: Any, name: str) -> Principal:
        if not isinstance(value, Principal):
            raise InvalidArgument(f"{name} must be a Principal, got {type(value).__name__}")
        return value

    @staticmethod
    def _expect_user(value: Any, name: str) -> User:
        if not isinstance(value, User):
            raise InvalidArgument(f"{name} must be a User, got {type(value).__name__}")
        return value

    def _record(self, kind: str, token_index: TokenIndex, params: Dict[str, Any]) -> LedgerEvent:
        """Append an applied mutation to the event log."""
        event = LedgerEvent(
            sequence_number=self._next_sequence,
            kind=kind,
            timestamp=self._current_time,
            token_index=token_index,
            params=tuple(params.items()),
        )
        self._next_sequence += 1
        self.event_log.append(event)
        if self.verbose:
            print(f"✓ {event!r}")
        return event

    def _reject(self, operation: str, error: NFTLedgerError) -> None:
        if self.verbose:
            print(f"✗ REJECTED {operation}: {type(error).__name__}: {error}")

    def __repr__(self) -> str:
        return (
            f"Ledger({self.name!r}, {self._tokens.count()} tokens, "
            f"{len(self._owners)} owners, {len(self._listings)} listings)"
        )
