"""
listing_book.py - Active Sale Listings

ListingBook holds at most one active Listing per token. It does not own
ownership data: every authorization check reads the current owner through
an OwnershipView at call time, never from a cached value.

Listing lifecycle per token:
    NotListed --list--> Listed --delist--> NotListed

There is no Sold transition; settlement happens outside the ledger.
"""

from __future__ import annotations
from datetime import datetime
from typing import Dict, List, Optional

from ..core import (
    OwnershipView, Principal, TokenIndex, Listing,
    Unauthorized, InvalidArgument, AlreadyListed, NotListed,
)


class ListingBook:
    """Mapping TokenIndex -> Listing, kept in creation order."""

    def __init__(self):
        self._listings: Dict[TokenIndex, Listing] = {}

    def list(
        self,
        view: OwnershipView,
        seller: Principal,
        token_index: TokenIndex,
        price: int,
        now: datetime,
    ) -> Listing:
        """
        Create a listing for token_index at price.

        Checks, in order:
        1. Token exists (NotFound, raised by the view)
        2. seller is the token's current owner (Unauthorized)
        3. price is a positive int (InvalidArgument)
        4. No active listing for the token (AlreadyListed)

        Args:
            view: Ownership lookup, read at call time
            seller: Principal creating the listing
            token_index: Token to list
            price: Asking price
            now: Listing creation time

        Returns:
            The new Listing
        """
        owner = view.owner_of_index(token_index)
        if owner != seller:
            raise Unauthorized(f"Token {token_index} not owned by {seller}")
        if isinstance(price, bool) or not isinstance(price, int):
            raise InvalidArgument(f"Price must be an int, got {type(price).__name__}")
        if price <= 0:
            raise InvalidArgument("Token can't be listed at zero price")
        if token_index in self._listings:
            raise AlreadyListed(
                f"Token {token_index} already listed; delist and list again to update the price"
            )
        listing = Listing(seller=seller, token_index=token_index, price=price, time=now)
        self._listings[token_index] = listing
        return listing

    def delist(self, view: OwnershipView, caller: Principal, token_index: TokenIndex) -> Listing:
        """
        Remove the active listing for token_index.

        Checks, in order: token exists (NotFound), caller is the current
        owner (Unauthorized), a listing is active (NotListed).

        Returns:
            The removed Listing
        """
        owner = view.owner_of_index(token_index)
        if owner != caller:
            raise Unauthorized(f"Token {token_index} not owned by {caller}")
        if token_index not in self._listings:
            raise NotListed(f"Token {token_index} not listed")
        return self._listings.pop(token_index)

    def active_listing_for(self, token_index: TokenIndex) -> Optional[Listing]:
        return self._listings.get(token_index)

    def discard(self, token_index: TokenIndex) -> Optional[Listing]:
        """Remove any listing for token_index without authorization checks."""
        return self._listings.pop(token_index, None)

    def listings(self) -> List[Listing]:
        """All active listings in creation order."""
        return list(self._listings.values())

    def listings_by(self, seller: Principal) -> List[Listing]:
        return [listing for listing in self._listings.values() if listing.seller == seller]

    def copy(self) -> ListingBook:
        cloned = ListingBook()
        cloned._listings = dict(self._listings)
        return cloned

    @classmethod
    def restore(cls, listings: List[Listing]) -> ListingBook:
        """
        Rebuild a book from persisted listings, preserving their order.

        Raises:
            ValueError: If two listings name the same token
        """
        book = cls()
        for listing in listings:
            if listing.token_index in book._listings:
                raise ValueError(f"Duplicate listing for token {listing.token_index}")
            book._listings[listing.token_index] = listing
        return book

    def __len__(self) -> int:
        return len(self._listings)

    def __contains__(self, token_index: object) -> bool:
        return token_index in self._listings

    def __repr__(self) -> str:
        return f"ListingBook({len(self._listings)} active)"
