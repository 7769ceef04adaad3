"""Tests for the subscription ledger — proves all-or-nothing operations."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from subledger.config import LedgerConfig
from subledger.errors import (
    AlreadyLinked,
    InsufficientBalance,
    NoProvidersSpecified,
    NotOwner,
    ProviderInactive,
    ProviderNotFound,
    SubscriberNotRegistered,
)
from subledger.ledger.core import SubscriptionLedger

MIN = Decimal("1")


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def ledger() -> SubscriptionLedger:
    ledger = SubscriptionLedger(LedgerConfig())
    ledger.register_provider("0xp1", "news", Decimal("100"), MIN, _now())
    ledger.register_provider("0xp2", "music", Decimal("60"), MIN, _now())
    return ledger


class TestRegisterSubscriber:
    def test_links_every_provider(self, ledger: SubscriptionLedger) -> None:
        sid = ledger.register_subscriber("0xs", Decimal("250"), [1, 2], MIN, _now())
        assert ledger.get_subscriber_info(sid).balance == Decimal("90")
        assert ledger.get_provider_info(1).link_count == 1
        assert ledger.get_provider_info(2).balance == Decimal("60")

    def test_unaffordable_second_provider_rolls_back(self, ledger: SubscriptionLedger) -> None:
        before = ledger.state.snapshot()
        with pytest.raises(InsufficientBalance):
            ledger.register_subscriber("0xs", Decimal("150"), [1, 2], MIN, _now())
        assert ledger.state == before
        assert ledger.subscribers.count == 0
        assert ledger.get_provider_info(1).balance == Decimal("0")

    def test_inactive_provider_rolls_back(self, ledger: SubscriptionLedger) -> None:
        ledger.set_provider_active(2, False)
        with pytest.raises(ProviderInactive):
            ledger.register_subscriber("0xs", Decimal("250"), [1, 2], MIN, _now())
        assert ledger.get_provider_info(1).link_count == 0
        assert ledger.subscribers.list_ids() == []

    def test_unknown_provider_rolls_back(self, ledger: SubscriptionLedger) -> None:
        with pytest.raises(ProviderNotFound):
            ledger.register_subscriber("0xs", Decimal("250"), [1, 9], MIN, _now())
        assert ledger.get_provider_info(1).balance == Decimal("0")

    def test_duplicate_provider_rejected(self, ledger: SubscriptionLedger) -> None:
        with pytest.raises(AlreadyLinked):
            ledger.register_subscriber("0xs", Decimal("250"), [1, 1], MIN, _now())
        assert ledger.subscribers.count == 0

    def test_failed_registration_reissues_id(self, ledger: SubscriptionLedger) -> None:
        with pytest.raises(InsufficientBalance):
            ledger.register_subscriber("0xs", Decimal("50"), [1], MIN, _now())
        assert ledger.register_subscriber("0xs", Decimal("250"), [1], MIN, _now()) == 1


class TestSubscribe:
    def test_adds_links_and_ids(self, ledger: SubscriptionLedger) -> None:
        sid = ledger.register_subscriber("0xs", Decimal("250"), [1], MIN, _now())
        links = ledger.subscribe(sid, [2], "0xs", _now())
        assert [link.subscriber_id for link in links] == [sid]
        info = ledger.get_subscriber_info(sid)
        assert info.provider_ids == (1, 2)
        assert info.balance == Decimal("90")

    def test_requires_owner(self, ledger: SubscriptionLedger) -> None:
        sid = ledger.register_subscriber("0xs", Decimal("250"), [1], MIN, _now())
        with pytest.raises(NotOwner):
            ledger.subscribe(sid, [2], "0xq", _now())

    def test_requires_providers(self, ledger: SubscriptionLedger) -> None:
        sid = ledger.register_subscriber("0xs", Decimal("250"), [1], MIN, _now())
        with pytest.raises(NoProvidersSpecified):
            ledger.subscribe(sid, [], "0xs", _now())

    def test_already_linked_rolls_back_ids(self, ledger: SubscriptionLedger) -> None:
        sid = ledger.register_subscriber("0xs", Decimal("250"), [1], MIN, _now())
        with pytest.raises(AlreadyLinked):
            ledger.subscribe(sid, [2, 1], "0xs", _now())
        info = ledger.get_subscriber_info(sid)
        assert info.provider_ids == (1,)
        assert info.balance == Decimal("150")
        assert ledger.get_provider_info(2).link_count == 0

    def test_unknown_subscriber(self, ledger: SubscriptionLedger) -> None:
        with pytest.raises(SubscriberNotRegistered):
            ledger.subscribe(5, [1], "0xs", _now())


class TestDeposit:
    def test_deposit_increases_escrow(self, ledger: SubscriptionLedger) -> None:
        sid = ledger.register_subscriber("0xs", Decimal("250"), [1], MIN, _now())
        assert ledger.deposit(sid, Decimal("25"), "0xs") == Decimal("175")


class TestAtomicScope:
    def test_exception_restores_state(self, ledger: SubscriptionLedger) -> None:
        before = ledger.state.snapshot()
        with pytest.raises(RuntimeError):
            with ledger.atomic():
                ledger.register_provider("0xp3", "film", Decimal("5"), MIN, _now())
                raise RuntimeError("external call failed")
        assert ledger.state == before
        assert ledger.providers.count == 2

    def test_savepoint_undoes_only_inner_block(self, ledger: SubscriptionLedger) -> None:
        with ledger.atomic():
            ledger.register_provider("0xp3", "film", Decimal("5"), MIN, _now())
            try:
                with ledger.atomic(savepoint=True):
                    ledger.register_provider("0xp4", "books", Decimal("5"), MIN, _now())
                    raise RuntimeError("inner failure")
            except RuntimeError:
                pass
        assert ledger.providers.list_ids() == [1, 2, 3]
        assert ledger.providers.count == 3

    def test_nested_scope_joins_outer(self, ledger: SubscriptionLedger) -> None:
        with pytest.raises(RuntimeError):
            with ledger.atomic():
                ledger.register_provider("0xp3", "film", Decimal("5"), MIN, _now())
                with ledger.atomic():
                    ledger.register_provider("0xp4", "books", Decimal("5"), MIN, _now())
                    raise RuntimeError("inner failure")
        assert ledger.providers.list_ids() == [1, 2]

    def test_only_outermost_scope_snapshots(self, ledger: SubscriptionLedger,
                                            monkeypatch: pytest.MonkeyPatch) -> None:
        taken = []
        real_snapshot = ledger.state.snapshot

        def counting_snapshot():
            taken.append(1)
            return real_snapshot()

        monkeypatch.setattr(ledger.state, "snapshot", counting_snapshot)
        with ledger.atomic():
            sid = ledger.register_subscriber("0xs", Decimal("250"), [1], MIN, _now())
            ledger.deposit(sid, Decimal("10"), "0xs")
        assert len(taken) == 1
        with ledger.atomic():
            with ledger.atomic(savepoint=True):
                pass
        assert len(taken) == 3

    def test_components_see_restored_state(self, ledger: SubscriptionLedger) -> None:
        with pytest.raises(RuntimeError):
            with ledger.atomic():
                ledger.register_subscriber("0xs", Decimal("250"), [1], MIN, _now())
                raise RuntimeError("boom")
        sid = ledger.register_subscriber("0xs", Decimal("250"), [1], MIN, _now())
        assert sid == 1
        assert ledger.get_provider_info(1).link_count == 1

    def test_withdraw_after_late_settlement(self, ledger: SubscriptionLedger) -> None:
        sid = ledger.register_subscriber("0xs", Decimal("250"), [1], MIN, _now())
        later = _now() + timedelta(days=31)
        remaining, report = ledger.withdraw_earnings(1, Decimal("200"), "0xp1", later)
        assert remaining == Decimal("0")
        assert report.charged == (sid,)
