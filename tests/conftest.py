"""
conftest.py - Shared pytest fixtures for NFT ledger tests

Provides common fixtures used across unit, conformance and functional tests:
- Principals (alice, bob, carol)
- Metadata descriptors
- Ledgers (empty, with minted tokens)
"""

import pytest
from datetime import datetime

from nft_ledger import (
    Ledger, Principal, User, MetadataPart, MetadataPurpose,
)


# =============================================================================
# IDENTITIES
# =============================================================================

@pytest.fixture
def alice():
    return Principal("alice")


@pytest.fixture
def bob():
    return Principal("bob")


@pytest.fixture
def carol():
    return Principal("carol")


# =============================================================================
# METADATA
# =============================================================================

@pytest.fixture
def artwork():
    """Single rendered metadata part with text, nat and blob data."""
    return (
        MetadataPart(
            MetadataPurpose.RENDERED,
            {"name": "Genesis", "edition": 1, "checksum": b"\x01\x02"},
            b"\x89PNG\r\n",
        ),
    )


@pytest.fixture
def preview():
    return (MetadataPart(MetadataPurpose.PREVIEW, {"name": "Thumbnail"}),)


# =============================================================================
# LEDGERS
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no tokens."""
    return Ledger("test", initial_time=datetime(2025, 1, 1), verbose=False)


@pytest.fixture
def minted_ledger(empty_ledger, alice, bob, artwork, preview):
    """
    Ledger with three tokens:
        0 -> alice (artwork)
        1 -> bob   (preview)
        2 -> alice (preview)
    """
    empty_ledger.mint_nft(alice, artwork)
    empty_ledger.mint_nft(bob, preview)
    empty_ledger.mint_nft(alice, preview)
    return empty_ledger


@pytest.fixture
def as_user():
    """Convert a Principal to its owner-index User."""
    return User.from_principal
