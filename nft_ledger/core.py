"""
Core types and pure functions for the NFT ledger.

This module provides the foundational data structures and protocols for the ledger:
1. Protocols: OwnershipView for read-only ownership access
2. Identity value types: Principal, AccountIdentifier, User
3. Token identifier conversions: into_token_index, into_token_identifier
4. Immutable records: MetadataPart, TokenRecord, Listing, MintReceipt, LedgerEvent
5. Exceptions: NFTLedgerError and the specific error kinds

Identities are not interchangeable. A Principal is the raw
identity of a holder, an AccountIdentifier is derived from a Principal by
hashing, and a User is the tagged union used as an owner-index key. All
conversions between them go through the explicit functions below.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
import hashlib
import re
import sys
import zlib
from typing import (
    Dict, List, Optional, Any, Protocol, Tuple, Union, Mapping, Iterable,
    runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Version of the persisted snapshot layout produced by snapshot.to_snapshot().
SNAPSHOT_SCHEMA_VERSION = 1

# Every token is non-fungible: one unit per token index.
TOKEN_UNIT_COUNT = 1

# Default logical start time of a ledger.
DEFAULT_EPOCH = datetime(1970, 1, 1)

# Domain separator and default subaccount used to derive account identifiers.
ACCOUNT_DOMAIN_SEPARATOR = b"\x0aaccount-id"
DEFAULT_SUBACCOUNT = bytes(32)

# Account identifiers are a 4-byte CRC32 checksum followed by a 28-byte SHA-224 hash.
ACCOUNT_IDENTIFIER_HEX_LENGTH = 64

MAX_PRINCIPAL_LENGTH = 128

# Event kinds (strings, not enum, matching the audit trail format).
EVENT_MINT = "MINT"
EVENT_TRANSFER = "TRANSFER"
EVENT_LIST = "LIST"
EVENT_DELIST = "DELIST"

_TOKEN_IDENTIFIER_PATTERN = re.compile(r"0|[1-9][0-9]*")
_HEX_PATTERN = re.compile(r"[0-9a-f]*")


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Dense, monotonically assigned index of a minted token.
TokenIndex = int

# Textual form of a token index as exposed to callers.
TokenIdentifier = str

# Value of a single metadata key: text, natural number or blob.
MetadataVal = Union[str, int, bytes]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class NFTLedgerError(Exception):
    """Base exception for all NFT ledger errors."""
    pass


class NotFound(NFTLedgerError):
    """Raised when a token identifier or index does not refer to a minted token."""
    pass


class Unauthorized(NFTLedgerError):
    """Raised when the caller is not the recorded owner of the token."""
    pass


class InvalidArgument(NFTLedgerError):
    """Raised for malformed input such as a zero price or an unusable identity."""
    pass


class AlreadyListed(NFTLedgerError):
    """Raised when listing a token that already has an active listing."""
    pass


class NotListed(NFTLedgerError):
    """Raised when delisting a token that has no active listing."""
    pass


class InvariantViolation(NFTLedgerError):
    """
    Raised when the token store and owner index disagree.

    This is an internal defect, never an ordinary user error. It is reported
    on stderr when raised and must not be caught inside the package.
    """
    pass


class SnapshotError(NFTLedgerError):
    """Raised when a persisted snapshot is malformed or has an unsupported schema."""
    pass


# Errors a caller is expected to surface as ordinary, recoverable outcomes.
RECOVERABLE_ERRORS = (NotFound, Unauthorized, InvalidArgument, AlreadyListed, NotListed)


def report_invariant_violation(message: str) -> InvariantViolation:
    """
    Emit an invariant violation on stderr and return the exception to raise.

    Usage:
        raise report_invariant_violation("token 3 missing from owner index")
    """
    print(f"‼ INVARIANT VIOLATION: {message}", file=sys.stderr)
    return InvariantViolation(message)


# ============================================================================
# IDENTITY VALUE TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Principal:
    """
    Raw identity of a token holder, as asserted by the hosting environment.

    Attributes:
        text: Textual principal (e.g., "rrkah-fqaaa-aaaaa-aaaaq-cai").
    """
    text: str

    def __post_init__(self):
        if not isinstance(self.text, str):
            raise ValueError(f"Principal text must be str, got {type(self.text)}")
        if not self.text or not self.text.strip():
            raise ValueError("Principal cannot be empty")
        if self.text != self.text.strip() or any(c.isspace() for c in self.text):
            raise ValueError(f"Principal cannot contain whitespace: {self.text!r}")
        if len(self.text) > MAX_PRINCIPAL_LENGTH:
            raise ValueError(f"Principal longer than {MAX_PRINCIPAL_LENGTH} characters")

    def to_bytes(self) -> bytes:
        return self.text.encode("utf-8")

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True, slots=True)
class AccountIdentifier:
    """
    Owner-derived addressable handle, distinct from the raw Principal.

    The hex form is 32 bytes: a big-endian CRC32 of the hash, followed by
    SHA-224(domain separator || principal || subaccount). The checksum is
    verified on construction.
    """
    hex: str

    def __post_init__(self):
        if not isinstance(self.hex, str):
            raise ValueError(f"AccountIdentifier must be str, got {type(self.hex)}")
        if len(self.hex) != ACCOUNT_IDENTIFIER_HEX_LENGTH or not _HEX_PATTERN.fullmatch(self.hex):
            raise ValueError(f"AccountIdentifier must be {ACCOUNT_IDENTIFIER_HEX_LENGTH} lowercase hex chars")
        raw = bytes.fromhex(self.hex)
        if zlib.crc32(raw[4:]).to_bytes(4, "big") != raw[:4]:
            raise ValueError(f"AccountIdentifier checksum mismatch: {self.hex}")

    @classmethod
    def from_principal(cls, principal: Principal, subaccount: bytes = DEFAULT_SUBACCOUNT) -> 'AccountIdentifier':
        """Derive the account identifier of a principal's subaccount."""
        if len(subaccount) != 32:
            raise ValueError("Subaccount must be exactly 32 bytes")
        digest = hashlib.sha224(ACCOUNT_DOMAIN_SEPARATOR + principal.to_bytes() + subaccount).digest()
        checksum = zlib.crc32(digest).to_bytes(4, "big")
        return cls((checksum + digest).hex())

    @classmethod
    def from_hex(cls, text: str) -> 'AccountIdentifier':
        """Parse a hex account identifier, accepting upper case and a 0x prefix."""
        text = text.strip().lower()
        if text.startswith("0x"):
            text = text[2:]
        return cls(text)

    def __str__(self) -> str:
        return self.hex


@dataclass(frozen=True, slots=True)
class User:
    """
    Owner-index key: either a principal or an account identifier, never both.

    Tokens are only ever held by principals, so owner-index entries are keyed
    by principal users. Account-form users can still authorize a transfer
    when they match the token's account identifier.
    """
    principal: Optional[Principal] = None
    account: Optional[AccountIdentifier] = None

    def __post_init__(self):
        if (self.principal is None) == (self.account is None):
            raise ValueError("User must wrap exactly one of principal or account")

    @classmethod
    def from_principal(cls, principal: Principal) -> 'User':
        return cls(principal=principal)

    @classmethod
    def from_account(cls, account: AccountIdentifier) -> 'User':
        return cls(account=account)

    def expect_principal(self) -> Principal:
        """Return the wrapped principal, or raise InvalidArgument for an account-form user."""
        if self.principal is None:
            raise InvalidArgument(f"Expected a principal user, got account {self.account}")
        return self.principal

    def to_account_identifier(self) -> AccountIdentifier:
        if self.account is not None:
            return self.account
        return AccountIdentifier.from_principal(self.principal)

    def identifies(self, principal: Principal, account: AccountIdentifier) -> bool:
        """True if this user denotes the holder with the given principal and account."""
        if self.principal is not None:
            return self.principal == principal
        return self.account == account

    def __str__(self) -> str:
        return str(self.principal) if self.principal is not None else str(self.account)


def into_token_index(token_identifier: Union[TokenIdentifier, TokenIndex]) -> TokenIndex:
    """
    Convert a token identifier to its token index.

    Accepts the canonical decimal text form ("0", "17") or a non-negative int.
    Anything else cannot name a minted token and raises NotFound.
    """
    if isinstance(token_identifier, bool):
        raise NotFound(f"Invalid token identifier: {token_identifier!r}")
    if isinstance(token_identifier, int):
        if token_identifier < 0:
            raise NotFound(f"Invalid token identifier: {token_identifier!r}")
        return token_identifier
    if isinstance(token_identifier, str) and _TOKEN_IDENTIFIER_PATTERN.fullmatch(token_identifier):
        return int(token_identifier)
    raise NotFound(f"Invalid token identifier: {token_identifier!r}")


def into_token_identifier(token_index: TokenIndex) -> TokenIdentifier:
    """Convert a token index to its canonical token identifier."""
    if isinstance(token_index, bool) or not isinstance(token_index, int) or token_index < 0:
        raise ValueError(f"Token index must be a non-negative int, got {token_index!r}")
    return str(token_index)


# ============================================================================
# METADATA
# ============================================================================

class MetadataPurpose(Enum):
    """What a metadata part is for."""
    PREVIEW = "preview"
    RENDERED = "rendered"


@dataclass(frozen=True, slots=True)
class MetadataPart:
    """
    One immutable part of a token's metadata descriptor.

    Attributes:
        purpose: Whether the part is a preview or the rendered asset.
        key_val_data: Ordered (key, value) pairs. A mapping is accepted and
                      frozen into a tuple in insertion order.
        data: Raw payload bytes.
    """
    purpose: MetadataPurpose
    key_val_data: Tuple[Tuple[str, MetadataVal], ...] = ()
    data: bytes = b""

    def __post_init__(self):
        if not isinstance(self.purpose, MetadataPurpose):
            raise ValueError(f"Metadata purpose must be MetadataPurpose, got {self.purpose!r}")
        pairs = self.key_val_data.items() if isinstance(self.key_val_data, Mapping) else self.key_val_data
        frozen: List[Tuple[str, MetadataVal]] = []
        seen = set()
        for key, value in pairs:
            if not isinstance(key, str) or not key:
                raise ValueError(f"Metadata key must be a non-empty str, got {key!r}")
            if key in seen:
                raise ValueError(f"Duplicate metadata key: {key}")
            seen.add(key)
            if isinstance(value, bool) or not isinstance(value, (str, int, bytes)):
                raise ValueError(f"Metadata value for {key} must be str, int or bytes, got {type(value)}")
            if isinstance(value, int) and value < 0:
                raise ValueError(f"Metadata value for {key} must be a natural number")
            frozen.append((key, value))
        object.__setattr__(self, 'key_val_data', tuple(frozen))
        if isinstance(self.data, bytearray):
            object.__setattr__(self, 'data', bytes(self.data))
        if not isinstance(self.data, bytes):
            raise ValueError(f"Metadata data must be bytes, got {type(self.data)}")

    @property
    def key_val(self) -> Dict[str, MetadataVal]:
        """Get key_val_data as a dictionary for convenience."""
        return dict(self.key_val_data)


# Immutable metadata descriptor supplied at mint time.
MetadataDesc = Tuple[MetadataPart, ...]


def as_metadata_desc(parts: Iterable[MetadataPart]) -> MetadataDesc:
    """Freeze a sequence of metadata parts into a descriptor."""
    desc = tuple(parts)
    for part in desc:
        if not isinstance(part, MetadataPart):
            raise ValueError(f"Metadata descriptor parts must be MetadataPart, got {type(part)}")
    return desc


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class TokenRecord:
    """
    Stored state of one minted token.

    index and metadata_desc never change. principal and account_identifier
    change together, only through TokenStore.set_owner().
    """
    index: TokenIndex
    principal: Principal
    account_identifier: AccountIdentifier
    metadata_desc: MetadataDesc

    @classmethod
    def issue(cls, index: TokenIndex, owner: Principal, metadata_desc: MetadataDesc) -> 'TokenRecord':
        return cls(
            index=index,
            principal=owner,
            account_identifier=AccountIdentifier.from_principal(owner),
            metadata_desc=metadata_desc,
        )

    @property
    def token_identifier(self) -> TokenIdentifier:
        return into_token_identifier(self.index)

    def with_owner(self, new_owner: Principal) -> 'TokenRecord':
        return replace(
            self,
            principal=new_owner,
            account_identifier=AccountIdentifier.from_principal(new_owner),
        )


@dataclass(frozen=True, slots=True)
class Listing:
    """
    An open offer to sell a token at a fixed price.

    Attributes:
        seller: Principal that created the listing (the owner at listing time).
        token_index: Listed token.
        price: Asking price, a strictly positive int.
        time: Ledger time at which the listing was created.
    """
    seller: Principal
    token_index: TokenIndex
    price: int
    time: datetime

    def __post_init__(self):
        if isinstance(self.price, bool) or not isinstance(self.price, int):
            raise ValueError(f"Listing price must be int, got {type(self.price)}")
        if self.price <= 0:
            raise ValueError("Listing price must be positive")

    def __repr__(self) -> str:
        return f"Listing(token {self.token_index} by {self.seller} @ {self.price})"


@dataclass(frozen=True, slots=True)
class MintReceipt:
    """Result of a successful mint: the new token id and its fixed unit count."""
    token_id: int
    id: int = TOKEN_UNIT_COUNT


@dataclass(frozen=True, slots=True)
class ExtendedMetadataResult:
    """Metadata descriptor of one token paired with its token id."""
    metadata_desc: MetadataDesc
    token_id: int


@dataclass(frozen=True, slots=True)
class LedgerEvent:
    """
    Immutable audit record of one applied ledger mutation.

    Attributes:
        sequence_number: Monotonic position within the ledger's event log.
        kind: EVENT_MINT, EVENT_TRANSFER, EVENT_LIST or EVENT_DELIST.
        timestamp: Ledger time at which the mutation was applied.
        token_index: Token affected by the mutation.
        params: Event-specific parameters as frozen tuple of (key, value) pairs.
    """
    sequence_number: int
    kind: str
    timestamp: datetime
    token_index: TokenIndex
    params: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def params_dict(self) -> Dict[str, Any]:
        return dict(self.params)

    def __repr__(self) -> str:
        details = ", ".join(f"{k}={v}" for k, v in self.params)
        return f"LedgerEvent(#{self.sequence_number} {self.kind} token={self.token_index} {details})"


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class OwnershipView(Protocol):
    """
    Read-only ownership lookup used to authorize listing operations.

    TokenStore implements this protocol; ListingBook only ever sees it
    through this interface, so authorization always reads the latest owner.
    """

    def owner_of_index(self, token_index: TokenIndex) -> Principal:
        """Return the current owner, raising NotFound for an unminted index."""
        ...
