"""
Atomicity Conformance Tests

INVARIANT: Operations are all-or-nothing.

    ∀ operation O:
        O succeeds ⟹ every store mutation of O is applied
        O fails    ⟹ no store is mutated and no event is recorded

Preconditions are checked before the first mutation, so partial
application is impossible by construction.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from nft_ledger import (
    Ledger, User, AccountIdentifier,
    NotFound, Unauthorized, InvalidArgument,
)
from tests.fake_view import PRINCIPALS, operations, apply_operation, ledger_state


class TestAtomicityProperties:
    """Property-based atomicity tests."""

    @given(st.lists(operations, min_size=1, max_size=50))
    @settings(max_examples=50)
    def test_failed_operation_leaves_state_unchanged(self, ops):
        """
        PROPERTY: Any rejected operation leaves all three stores and the
        event log exactly as they were.
        """
        ledger = Ledger("test", verbose=False)
        for op in ops:
            before = ledger_state(ledger)
            error = apply_operation(ledger, op)
            if error is not None:
                assert ledger_state(ledger) == before, f"{op} mutated state: {error}"
            else:
                assert ledger_state(ledger)['events'] == before['events'] + 1

    @given(st.integers(0, 3), st.integers(0, 3))
    @settings(max_examples=30)
    def test_unauthorized_transfer_changes_nothing(self, owner, intruder):
        """
        PROPERTY: transfer with from != owner_of(i) fails Unauthorized and
        leaves all state unchanged.
        """
        if owner == intruder:
            return
        ledger = Ledger("test", verbose=False)
        ledger.mint_nft(PRINCIPALS[owner], ())
        ledger.list(PRINCIPALS[owner], "0", 10)
        before = ledger_state(ledger)

        with pytest.raises(Unauthorized):
            ledger.transfer(
                User.from_principal(PRINCIPALS[intruder]),
                User.from_principal(PRINCIPALS[intruder]),
                "0",
            )
        assert ledger_state(ledger) == before


class TestAtomicityEdgeCases:
    """Edge cases for all-or-nothing semantics."""

    def test_transfer_to_account_user_keeps_listing(self, minted_ledger, alice, bob, as_user):
        """A transfer rejected after the ownership check must not clear the listing."""
        minted_ledger.list(alice, "0", 100)
        before = ledger_state(minted_ledger)
        with pytest.raises(InvalidArgument):
            minted_ledger.transfer(
                as_user(alice), User.from_account(AccountIdentifier.from_principal(bob)), "0"
            )
        assert ledger_state(minted_ledger) == before
        assert minted_ledger.active_listing("0").price == 100

    def test_rejected_mint_consumes_no_id(self, minted_ledger, alice):
        with pytest.raises(InvalidArgument):
            minted_ledger.mint_nft(alice, ["not a part"])
        assert minted_ledger.mint_nft(alice, ()).token_id == 3

    def test_malformed_identifier_changes_nothing(self, minted_ledger, alice, bob, as_user):
        before = ledger_state(minted_ledger)
        for bad in ("", "-1", "1e3", "0x1"):
            with pytest.raises(NotFound):
                minted_ledger.transfer(as_user(alice), as_user(bob), bad)
        assert ledger_state(minted_ledger) == before
