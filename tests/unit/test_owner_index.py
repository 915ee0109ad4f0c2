"""
test_owner_index.py - Unit tests for OwnerIndex

Tests:
- add/remove bookkeeping and receipt order
- empty entries are dropped
- duplicate add and missing remove are invariant violations
"""

import pytest

from nft_ledger import OwnerIndex, User, AccountIdentifier, InvariantViolation


class TestAddRemove:
    """Tests for add() and remove()."""

    def test_add_creates_entry(self, alice, as_user):
        index = OwnerIndex()
        index.add(as_user(alice), 3)
        assert index.contains(as_user(alice), 3)
        assert index.balance_of(as_user(alice)) == 1
        assert index.tokens_of(as_user(alice)) == (3,)

    def test_receipt_order_preserved(self, alice, as_user):
        index = OwnerIndex()
        for token in (5, 1, 3):
            index.add(as_user(alice), token)
        assert index.tokens_of(as_user(alice)) == (5, 1, 3)

    def test_remove_drops_empty_entry(self, alice, as_user):
        index = OwnerIndex()
        index.add(as_user(alice), 0)
        index.remove(as_user(alice), 0)
        assert index.owners() == []
        assert len(index) == 0
        assert index.tokens_of(as_user(alice)) == ()
        assert index.balance_of(as_user(alice)) == 0

    def test_remove_keeps_remaining_tokens(self, alice, as_user):
        index = OwnerIndex()
        index.add(as_user(alice), 0)
        index.add(as_user(alice), 1)
        index.remove(as_user(alice), 0)
        assert index.tokens_of(as_user(alice)) == (1,)

    def test_unknown_user_has_no_tokens(self, bob, as_user):
        index = OwnerIndex()
        assert index.balance_of(as_user(bob)) == 0
        assert not index.contains(as_user(bob), 0)

    def test_account_form_user_is_separate_key(self, alice, as_user):
        index = OwnerIndex()
        index.add(as_user(alice), 0)
        account_user = User.from_account(AccountIdentifier.from_principal(alice))
        assert index.balance_of(account_user) == 0


class TestInvariantViolations:
    """Inconsistent add/remove calls are reported as invariant violations."""

    def test_duplicate_add_raises(self, alice, as_user, capsys):
        index = OwnerIndex()
        index.add(as_user(alice), 0)
        with pytest.raises(InvariantViolation, match="already indexed"):
            index.add(as_user(alice), 0)
        assert "INVARIANT VIOLATION" in capsys.readouterr().err

    def test_remove_missing_raises(self, alice, bob, as_user, capsys):
        index = OwnerIndex()
        index.add(as_user(alice), 0)
        with pytest.raises(InvariantViolation, match="not indexed"):
            index.remove(as_user(bob), 0)
        with pytest.raises(InvariantViolation):
            index.remove(as_user(alice), 1)
        assert "INVARIANT VIOLATION" in capsys.readouterr().err


class TestCopy:
    """Tests for copy() and items()."""

    def test_copy_is_deep(self, alice, bob, as_user):
        index = OwnerIndex()
        index.add(as_user(alice), 0)
        cloned = index.copy()
        cloned.add(as_user(alice), 1)
        cloned.add(as_user(bob), 2)
        assert index.tokens_of(as_user(alice)) == (0,)
        assert index.balance_of(as_user(bob)) == 0

    def test_items(self, alice, bob, as_user):
        index = OwnerIndex()
        index.add(as_user(alice), 0)
        index.add(as_user(bob), 1)
        index.add(as_user(alice), 2)
        assert dict(index.items()) == {as_user(alice): (0, 2), as_user(bob): (1,)}
