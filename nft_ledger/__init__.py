"""
nft_ledger - Non-Fungible Token Registry and Listing Ledger

Tracks which principal owns which token, serves DIP-721 style metadata and
ownership queries, and keeps a sale-listing book on top of ownership.

Usage:
    from nft_ledger import Ledger, Principal, User, MetadataPart, MetadataPurpose

    ledger = Ledger("main")
    alice, bob = Principal("alice"), Principal("bob")

    receipt = ledger.mint_nft(alice, [
        MetadataPart(MetadataPurpose.RENDERED, {"name": "Genesis"}, b"...")
    ])
    ledger.transfer(User.from_principal(alice), User.from_principal(bob), str(receipt.token_id))

    ledger.list(bob, "0", 100)
    ledger.delist(bob, "0")
"""

# Core types
from .core import (
    # Identity
    Principal,
    AccountIdentifier,
    User,
    into_token_index,
    into_token_identifier,
    # Metadata
    MetadataPurpose,
    MetadataPart,
    as_metadata_desc,
    # Records
    TokenRecord,
    Listing,
    MintReceipt,
    ExtendedMetadataResult,
    LedgerEvent,
    OwnershipView,
    # Exceptions
    NFTLedgerError,
    NotFound,
    Unauthorized,
    InvalidArgument,
    AlreadyListed,
    NotListed,
    InvariantViolation,
    SnapshotError,
    RECOVERABLE_ERRORS,
    # Constants
    SNAPSHOT_SCHEMA_VERSION,
    TOKEN_UNIT_COUNT,
    EVENT_MINT,
    EVENT_TRANSFER,
    EVENT_LIST,
    EVENT_DELIST,
)

# Stores
from .stores import TokenStore, OwnerIndex, ListingBook

# Ledger
from .ledger import Ledger

# Persistence
from .snapshot import (
    to_snapshot,
    from_snapshot,
    dumps_snapshot,
    loads_snapshot,
)

__all__ = [
    # Identity
    'Principal', 'AccountIdentifier', 'User', 'into_token_index', 'into_token_identifier',
    # Metadata
    'MetadataPurpose', 'MetadataPart', 'as_metadata_desc',
    # Records
    'TokenRecord', 'Listing', 'MintReceipt', 'ExtendedMetadataResult', 'LedgerEvent',
    'OwnershipView',
    # Exceptions
    'NFTLedgerError', 'NotFound', 'Unauthorized', 'InvalidArgument', 'AlreadyListed',
    'NotListed', 'InvariantViolation', 'SnapshotError', 'RECOVERABLE_ERRORS',
    # Constants
    'SNAPSHOT_SCHEMA_VERSION', 'TOKEN_UNIT_COUNT',
    'EVENT_MINT', 'EVENT_TRANSFER', 'EVENT_LIST', 'EVENT_DELIST',
    # Stores
    'TokenStore', 'OwnerIndex', 'ListingBook',
    # Ledger
    'Ledger',
    # Persistence
    'to_snapshot', 'from_snapshot', 'dumps_snapshot', 'loads_snapshot',
]

__version__ = '1.0.0'
