"""
snapshot.py - Versioned Persistence Snapshots

Converts a Ledger to and from a plain, JSON-compatible dictionary so a
hosting service can persist it across restarts. Storage itself is the
host's concern; this module only defines the layout.

Layout (schema_version 1):
    {
        "schema_version": 1,
        "name": "main",
        "initial_time": "1970-01-01T00:00:00",
        "current_time": "2025-01-01T09:30:00",
        "clear_listings_on_transfer": true,
        "sequence": 7,
        "tokens": [{"index": 0, "owner": "alice", "account_identifier": "...",
                    "metadata_desc": [...]}],
        "owner_index": {"alice": [0, 2]},
        "listings": [{"token_index": 0, "seller": "alice", "price": 100,
                      "time": "..."}],
        "events": [...]
    }

Keys added by later schema versions must be optional: restore() fills in
defaults for anything missing, so older snapshots keep loading.
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional
import json

from .core import (
    Principal, AccountIdentifier, User,
    MetadataPart, MetadataPurpose, MetadataDesc,
    TokenRecord, Listing, LedgerEvent,
    SNAPSHOT_SCHEMA_VERSION, DEFAULT_EPOCH,
    EVENT_MINT, EVENT_TRANSFER, EVENT_LIST, EVENT_DELIST,
    SnapshotError, NFTLedgerError,
)
from .ledger import Ledger
from .stores import TokenStore, OwnerIndex, ListingBook


SUPPORTED_SCHEMA_VERSIONS = frozenset({1})


# ============================================================================
# VALUE ENCODING
# ============================================================================

def _encode_metadata_val(value: Any) -> Dict[str, Any]:
    if isinstance(value, str):
        return {"text": value}
    if isinstance(value, bytes):
        return {"blob": value.hex()}
    return {"nat": value}


def _decode_metadata_val(encoded: Dict[str, Any]) -> Any:
    if len(encoded) != 1:
        raise SnapshotError(f"Metadata value must have exactly one variant: {encoded!r}")
    (variant, value), = encoded.items()
    if variant == "text":
        return value
    if variant == "nat":
        return value
    if variant == "blob":
        return bytes.fromhex(value)
    raise SnapshotError(f"Unknown metadata value variant: {variant}")


def encode_metadata_desc(desc: MetadataDesc) -> List[Dict[str, Any]]:
    return [
        {
            "purpose": part.purpose.value,
            "key_val_data": [[key, _encode_metadata_val(value)] for key, value in part.key_val_data],
            "data": part.data.hex(),
        }
        for part in desc
    ]


def decode_metadata_desc(encoded: List[Dict[str, Any]]) -> MetadataDesc:
    return tuple(
        MetadataPart(
            purpose=MetadataPurpose(part["purpose"]),
            key_val_data=tuple(
                (key, _decode_metadata_val(value)) for key, value in part.get("key_val_data", [])
            ),
            data=bytes.fromhex(part.get("data", "")),
        )
        for part in encoded
    )


def _encode_event(event: LedgerEvent) -> Dict[str, Any]:
    params = event.params_dict
    if event.kind == EVENT_MINT:
        encoded_params = {"to": str(params["to"])}
    elif event.kind == EVENT_TRANSFER:
        cleared = params.get("cleared_listing")
        encoded_params = {
            "from_owner": str(params["from_owner"]),
            "to_owner": str(params["to_owner"]),
            "cleared_listing": _encode_listing(cleared) if cleared is not None else None,
        }
    elif event.kind == EVENT_LIST:
        encoded_params = {"seller": str(params["seller"]), "price": params["price"]}
    elif event.kind == EVENT_DELIST:
        encoded_params = {"caller": str(params["caller"]), "price": params["price"]}
    else:
        raise SnapshotError(f"Cannot encode event kind {event.kind}")
    return {
        "sequence_number": event.sequence_number,
        "kind": event.kind,
        "timestamp": event.timestamp.isoformat(),
        "token_index": event.token_index,
        "params": encoded_params,
    }


def _decode_event(encoded: Dict[str, Any]) -> LedgerEvent:
    kind = encoded["kind"]
    raw = encoded.get("params", {})
    if kind == EVENT_MINT:
        params = {"to": Principal(raw["to"])}
    elif kind == EVENT_TRANSFER:
        cleared = raw.get("cleared_listing")
        params = {
            "from_owner": Principal(raw["from_owner"]),
            "to_owner": Principal(raw["to_owner"]),
            "cleared_listing": _decode_listing(cleared) if cleared is not None else None,
        }
    elif kind == EVENT_LIST:
        params = {"seller": Principal(raw["seller"]), "price": raw["price"]}
    elif kind == EVENT_DELIST:
        params = {"caller": Principal(raw["caller"]), "price": raw["price"]}
    else:
        raise SnapshotError(f"Unknown event kind {kind}")
    return LedgerEvent(
        sequence_number=encoded["sequence_number"],
        kind=kind,
        timestamp=datetime.fromisoformat(encoded["timestamp"]),
        token_index=encoded["token_index"],
        params=tuple(params.items()),
    )


def _encode_listing(listing: Listing) -> Dict[str, Any]:
    return {
        "token_index": listing.token_index,
        "seller": str(listing.seller),
        "price": listing.price,
        "time": listing.time.isoformat(),
    }


def _decode_listing(encoded: Dict[str, Any]) -> Listing:
    return Listing(
        seller=Principal(encoded["seller"]),
        token_index=encoded["token_index"],
        price=encoded["price"],
        time=datetime.fromisoformat(encoded["time"]),
    )


# ============================================================================
# SNAPSHOT / RESTORE
# ============================================================================

def to_snapshot(ledger: Ledger) -> Dict[str, Any]:
    """
    Produce a versioned, JSON-compatible snapshot of a ledger.

    The snapshot carries everything needed to rebuild the ledger exactly:
    tokens, owner index (in receipt order), listings (in creation order),
    clock, configuration and the event log.
    """
    return {
        "schema_version": SNAPSHOT_SCHEMA_VERSION,
        "name": ledger.name,
        "initial_time": ledger.initial_time.isoformat(),
        "current_time": ledger.current_time.isoformat(),
        "clear_listings_on_transfer": ledger.clear_listings_on_transfer,
        "sequence": len(ledger.event_log),
        "tokens": [
            {
                "index": record.index,
                "owner": str(record.principal),
                "account_identifier": record.account_identifier.hex,
                "metadata_desc": encode_metadata_desc(record.metadata_desc),
            }
            for record in ledger.token_store
        ],
        "owner_index": {
            str(owner.expect_principal()): list(indices)
            for owner, indices in ledger.owner_index.items()
        },
        "listings": [_encode_listing(listing) for listing in ledger.listing_book.listings()],
        "events": [_encode_event(event) for event in ledger.event_log],
    }


def from_snapshot(snapshot: Dict[str, Any], verbose: bool = False) -> Ledger:
    """
    Restore a ledger from a snapshot produced by to_snapshot().

    Account identifiers are re-derived from the owners and must match the
    stored values. The restored stores must pass verify_consistency(), and
    replaying the event log must rebuild exactly the same stores.

    Args:
        snapshot: Snapshot dictionary
        verbose: Verbose flag of the restored ledger

    Returns:
        A Ledger with identical state

    Raises:
        SnapshotError: If the schema version is unsupported or the data is
                       malformed or inconsistent
    """
    if not isinstance(snapshot, dict):
        raise SnapshotError(f"Snapshot must be a dict, got {type(snapshot).__name__}")
    version = snapshot.get("schema_version")
    if version not in SUPPORTED_SCHEMA_VERSIONS:
        raise SnapshotError(f"Unsupported snapshot schema version: {version!r}")

    try:
        records = []
        for entry in snapshot.get("tokens", []):
            record = TokenRecord.issue(
                entry["index"],
                Principal(entry["owner"]),
                decode_metadata_desc(entry.get("metadata_desc", [])),
            )
            stored_account = entry.get("account_identifier")
            if stored_account is not None and AccountIdentifier(stored_account) != record.account_identifier:
                raise SnapshotError(f"Account identifier mismatch for token {record.index}")
            records.append(record)

        owners = OwnerIndex()
        for owner_text, indices in snapshot.get("owner_index", {}).items():
            owner = User.from_principal(Principal(owner_text))
            for token_index in indices:
                if owners.contains(owner, token_index):
                    raise SnapshotError(f"Token {token_index} listed twice under {owner_text}")
                owners.add(owner, token_index)

        listings = ListingBook.restore([_decode_listing(item) for item in snapshot.get("listings", [])])
        events = [_decode_event(item) for item in snapshot.get("events", [])]

        initial_time = datetime.fromisoformat(snapshot["initial_time"]) \
            if "initial_time" in snapshot else DEFAULT_EPOCH
        current_time = datetime.fromisoformat(snapshot["current_time"]) \
            if "current_time" in snapshot else initial_time

        ledger = Ledger(
            name=snapshot.get("name", "restored"),
            initial_time=initial_time,
            verbose=False,
            clear_listings_on_transfer=snapshot.get("clear_listings_on_transfer", True),
        )
        ledger._tokens = TokenStore.restore(records)
        ledger._owners = owners
        ledger._listings = listings
        ledger.event_log = events
        ledger._current_time = current_time
        ledger._next_sequence = snapshot.get("sequence", len(events))
    except SnapshotError:
        raise
    except (KeyError, TypeError, ValueError, AttributeError, NFTLedgerError) as e:
        raise SnapshotError(f"Malformed snapshot: {e}") from e

    check = ledger.verify_consistency()
    if ledger.clear_listings_on_transfer:
        problems = check['discrepancies']
    else:
        # Stale listings are expected when transfers leave listings in place
        problems = [d for d in check['discrepancies'] if not d['error'].startswith('stale listing')]
    if problems:
        raise SnapshotError(f"Inconsistent snapshot: {problems}")

    _check_event_log(ledger)
    ledger.verbose = verbose
    return ledger


def _check_event_log(ledger: Ledger) -> None:
    """
    Require the restored event log to rebuild exactly the restored stores.

    Raises:
        SnapshotError: If the sequence counter, the clock or the replayed
                       state disagrees with the restored ledger
    """
    if ledger._next_sequence != len(ledger.event_log):
        raise SnapshotError(
            f"Sequence {ledger._next_sequence} does not match {len(ledger.event_log)} events"
        )
    if ledger.event_log and ledger.event_log[-1].timestamp > ledger.current_time:
        raise SnapshotError("Current time is before the last recorded event")

    try:
        replayed = ledger.replay()
    except NFTLedgerError as e:
        raise SnapshotError(f"Event log does not replay: {e}") from e

    mismatched = [
        name for name, ours, theirs in (
            ("tokens", ledger.token_store.records(), replayed.token_store.records()),
            ("owner_index", dict(ledger.owner_index.items()), dict(replayed.owner_index.items())),
            ("listings", ledger.listing_book.listings(), replayed.listing_book.listings()),
            ("events", ledger.event_log, replayed.event_log),
        )
        if ours != theirs
    ]
    if mismatched:
        raise SnapshotError(f"Event log disagrees with restored state: {', '.join(mismatched)}")


def dumps_snapshot(ledger: Ledger, indent: Optional[int] = None) -> str:
    """Serialize a ledger snapshot to a JSON string with sorted keys."""
    return json.dumps(to_snapshot(ledger), sort_keys=True, indent=indent)


def loads_snapshot(text: str, verbose: bool = False) -> Ledger:
    """Restore a ledger from a JSON string produced by dumps_snapshot()."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SnapshotError(f"Snapshot is not valid JSON: {e}") from e
    return from_snapshot(data, verbose=verbose)
