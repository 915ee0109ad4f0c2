"""
test_reproducibility.py - Clone, replay and snapshot determinism

Verifies that:
- clone() produces an independent copy
- replay() rebuilds identical state from the event log
- Identical operation sequences produce identical snapshots
"""

from datetime import datetime, timedelta

from hypothesis import given, settings
from hypothesis import strategies as st

from nft_ledger import Ledger, User, Principal, dumps_snapshot
from tests.fake_view import operations, apply_operation, ledger_state


def _build(ops, verbose=False, clear=True):
    ledger = Ledger("repro", initial_time=datetime(2025, 1, 1), verbose=verbose,
                    clear_listings_on_transfer=clear)
    for step, op in enumerate(ops):
        ledger.advance_time(datetime(2025, 1, 1) + timedelta(minutes=step))
        apply_operation(ledger, op)
    return ledger


class TestClone:

    def test_clone_is_independent(self, minted_ledger, alice, bob, as_user):
        cloned = minted_ledger.clone()
        cloned.transfer(as_user(alice), as_user(bob), "0")
        cloned.list(bob, "0", 10)
        cloned.mint_nft(bob, ())
        cloned.advance_time(datetime(2030, 1, 1))

        assert minted_ledger.owner_of("0") == alice
        assert minted_ledger.active_listing("0") is None
        assert minted_ledger.total_supply() == 3
        assert minted_ledger.current_time == datetime(2025, 1, 1)
        assert len(cloned.event_log) == len(minted_ledger.event_log) + 3

    def test_clone_preserves_state(self, minted_ledger, alice):
        minted_ledger.list(alice, "0", 10)
        cloned = minted_ledger.clone()
        assert ledger_state(cloned) == ledger_state(minted_ledger)
        assert cloned.clear_listings_on_transfer == minted_ledger.clear_listings_on_transfer

    def test_original_independent_of_clone(self, minted_ledger, alice, carol, as_user):
        cloned = minted_ledger.clone()
        minted_ledger.transfer(as_user(alice), as_user(carol), "2")
        assert cloned.owner_of("2") == alice
        assert cloned.balance_of(carol) == 0


class TestReplay:

    @given(st.lists(operations, max_size=40))
    @settings(max_examples=50)
    def test_replay_matches_original(self, ops):
        ledger = _build(ops)
        replayed = ledger.replay()
        assert replayed.name == "repro_replayed"
        assert ledger_state(replayed) == ledger_state(ledger)
        assert replayed.event_log == ledger.event_log

    @given(st.lists(operations, max_size=40))
    @settings(max_examples=30)
    def test_replay_without_listing_clearing(self, ops):
        ledger = _build(ops, clear=False)
        assert ledger_state(ledger.replay()) == ledger_state(ledger)

    def test_replay_of_empty_ledger(self, empty_ledger):
        assert empty_ledger.replay().total_supply() == 0


class TestDeterminism:

    @given(st.lists(operations, max_size=40))
    @settings(max_examples=30)
    def test_same_operations_same_snapshot(self, ops):
        assert dumps_snapshot(_build(ops)) == dumps_snapshot(_build(ops))

    def test_account_identifiers_are_stable(self):
        ledger = Ledger("ids", verbose=False)
        ledger.mint_nft(Principal("alice"), ())
        ledger.transfer(User.from_principal(Principal("alice")), User.from_principal(Principal("bob")), "0")
        other = Ledger("ids", verbose=False)
        other.mint_nft(Principal("bob"), ())
        assert ledger.bearer("0") == other.bearer("0")
