"""
Backing stores composed by the Ledger facade.

Each store owns exactly one structure and never calls into another store.
Cross-store consistency is the Ledger's responsibility.
"""

from .token_store import TokenStore
from .owner_index import OwnerIndex
from .listing_book import ListingBook

__all__ = ['TokenStore', 'OwnerIndex', 'ListingBook']
