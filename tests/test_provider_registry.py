"""Tests for the provider registry — proves registration, removal and earnings rules."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from subledger.config import LedgerConfig
from subledger.errors import (
    CapacityExceeded,
    DuplicateKey,
    FeeTooLow,
    InsufficientBalance,
    InvalidAmount,
    NotOwner,
    ProviderInactive,
    ProviderNotFound,
    StateUnchanged,
    WithdrawalLocked,
)
from subledger.ledger.core import SubscriptionLedger
from subledger.models.ledger import BillingCycle, key_hash

MIN = Decimal("1")


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


def _ledger(**config) -> SubscriptionLedger:
    return SubscriptionLedger(LedgerConfig(**config))


def _provider(ledger: SubscriptionLedger, owner: str = "0xp", key: str = "news",
              fee: str = "100") -> int:
    return ledger.register_provider(owner, key, Decimal(fee), MIN, _now())


def _subscriber(ledger: SubscriptionLedger, pid: int, deposit: str = "250",
                owner: str = "0xs") -> int:
    return ledger.register_subscriber(owner, Decimal(deposit), [pid], MIN, _now())


class TestRegistration:
    def test_register_then_info(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        assert pid == 1
        info = ledger.get_provider_info(pid)
        assert info.as_tuple() == ("0xp", Decimal("100"), Decimal("0"), 0, True)

    def test_defaults_applied(self) -> None:
        ledger = _ledger(default_billing_cycle=BillingCycle.YEAR)
        pid = _provider(ledger)
        provider = ledger.providers.get(pid)
        assert provider.billing_cycle == BillingCycle.YEAR
        assert provider.next_withdrawal_utc == _now() + timedelta(days=30)
        assert provider.key_hash == key_hash("news", "0xp")

    def test_fee_too_low_consumes_no_id(self) -> None:
        ledger = _ledger()
        with pytest.raises(FeeTooLow) as exc:
            ledger.register_provider("0xp", "news", Decimal("0.5"), MIN, _now())
        assert exc.value.minimum == MIN
        assert ledger.providers.count == 0
        assert ledger.providers.list_ids() == []
        assert _provider(ledger) == 1

    def test_fee_equal_to_minimum_accepted(self) -> None:
        ledger = _ledger()
        pid = ledger.register_provider("0xp", "news", MIN, MIN, _now())
        assert ledger.get_provider_info(pid).fee_per_cycle == MIN

    def test_duplicate_key_same_owner_rejected(self) -> None:
        ledger = _ledger()
        _provider(ledger)
        with pytest.raises(DuplicateKey) as exc:
            _provider(ledger)
        assert exc.value.provider_id == 1
        assert ledger.providers.count == 1

    def test_same_key_different_owner_allowed(self) -> None:
        ledger = _ledger()
        assert _provider(ledger, owner="0xa") == 1
        assert _provider(ledger, owner="0xb") == 2


class TestCapacity:
    def test_limit_of_200(self) -> None:
        ledger = _ledger(max_providers=200)
        for i in range(200):
            assert _provider(ledger, key=f"k{i}") == i + 1
        with pytest.raises(CapacityExceeded) as exc:
            _provider(ledger, key="k200")
        assert exc.value.limit == 200
        assert ledger.get_provider_info(1).owner == "0xp"
        assert ledger.get_provider_info(200).owner == "0xp"

    def test_capacity_checked_before_fee(self) -> None:
        ledger = _ledger(max_providers=1)
        _provider(ledger)
        with pytest.raises(CapacityExceeded):
            ledger.register_provider("0xp", "other", Decimal("0"), MIN, _now())

    def test_removed_providers_still_count(self) -> None:
        ledger = _ledger(max_providers=1)
        pid = _provider(ledger)
        ledger.remove_provider(pid, "0xp")
        with pytest.raises(CapacityExceeded):
            _provider(ledger, key="again")

    def test_unlimited(self) -> None:
        ledger = _ledger(max_providers=None)
        for i in range(250):
            _provider(ledger, key=f"k{i}")
        assert ledger.providers.count == 250


class TestRemoval:
    def test_remove_returns_balance(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        _subscriber(ledger, pid)
        assert ledger.remove_provider(pid, "0xp") == Decimal("100")

    def test_reads_fail_after_removal(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        ledger.remove_provider(pid, "0xp")
        with pytest.raises(ProviderNotFound):
            ledger.get_provider_info(pid)
        with pytest.raises(ProviderNotFound):
            ledger.remove_provider(pid, "0xp")
        with pytest.raises(ProviderNotFound):
            ledger.process_payments(pid, _now())
        assert ledger.providers.list_ids() == []

    def test_record_is_tombstoned(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        ledger.remove_provider(pid, "0xp")
        record = ledger.state.providers[pid]
        assert record.is_absent
        assert record.balance == Decimal("0")

    def test_key_can_be_registered_again(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        ledger.remove_provider(pid, "0xp")
        assert _provider(ledger) == 2

    def test_remove_requires_owner(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        with pytest.raises(NotOwner):
            ledger.remove_provider(pid, "0xmallory")
        assert ledger.get_provider_info(pid).is_active

    def test_subscribers_keep_removed_provider_id(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        sid = _subscriber(ledger, pid)
        ledger.remove_provider(pid, "0xp")
        info = ledger.get_subscriber_info(sid)
        assert info.provider_ids == (pid,)
        assert info.balance == Decimal("150")


class TestFeeUpdate:
    def test_update_fee_and_cycle(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        ledger.update_provider_fee(pid, Decimal("40"), BillingCycle.DAY, "0xp", MIN)
        provider = ledger.providers.get(pid)
        assert provider.fee_per_cycle == Decimal("40")
        assert provider.billing_cycle == BillingCycle.DAY

    def test_update_below_minimum_rejected(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        with pytest.raises(FeeTooLow):
            ledger.update_provider_fee(pid, Decimal("5"), BillingCycle.MONTH, "0xp", Decimal("10"))
        assert ledger.get_provider_info(pid).fee_per_cycle == Decimal("100")

    def test_update_requires_owner(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        with pytest.raises(NotOwner):
            ledger.update_provider_fee(pid, Decimal("40"), BillingCycle.MONTH, "0xq", MIN)

    def test_existing_due_times_kept(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        _subscriber(ledger, pid)
        ledger.update_provider_fee(pid, Decimal("40"), BillingCycle.DAY, "0xp", MIN)
        link = ledger.get_provider_links(pid)[0]
        assert link.next_billing_utc == _now() + timedelta(days=30)


class TestActivation:
    def test_deactivate_and_reactivate(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        ledger.set_provider_active(pid, False)
        assert not ledger.get_provider_info(pid).is_active
        ledger.set_provider_active(pid, True)
        assert ledger.get_provider_info(pid).is_active

    def test_same_state_rejected(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        with pytest.raises(StateUnchanged, match="already active"):
            ledger.set_provider_active(pid, True)

    def test_inactive_provider_refuses_links(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        ledger.set_provider_active(pid, False)
        with pytest.raises(ProviderInactive):
            _subscriber(ledger, pid)
        assert ledger.subscribers.count == 0


class TestWithdrawal:
    def test_locked_until_window_passes(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        _subscriber(ledger, pid)
        with pytest.raises(WithdrawalLocked) as exc:
            ledger.withdraw_earnings(pid, Decimal("50"), "0xp", _now() + timedelta(days=29))
        assert exc.value.available_utc == _now() + timedelta(days=30)

    def test_withdraw_settles_due_links_first(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        sid = _subscriber(ledger, pid)
        later = _now() + timedelta(days=30)
        remaining, report = ledger.withdraw_earnings(pid, Decimal("150"), "0xp", later)
        assert report.charged == (sid,)
        assert remaining == Decimal("50")
        assert ledger.get_subscriber_info(sid).balance == Decimal("50")
        assert ledger.providers.get(pid).next_withdrawal_utc == later + timedelta(days=30)

    def test_one_withdrawal_per_window(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        _subscriber(ledger, pid)
        later = _now() + timedelta(days=30)
        ledger.withdraw_earnings(pid, Decimal("10"), "0xp", later)
        with pytest.raises(WithdrawalLocked):
            ledger.withdraw_earnings(pid, Decimal("10"), "0xp", later + timedelta(days=1))

    def test_overdraw_reverts_settlement_pass(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        sid = _subscriber(ledger, pid)
        later = _now() + timedelta(days=30)
        with pytest.raises(InsufficientBalance) as exc:
            ledger.withdraw_earnings(pid, Decimal("1000"), "0xp", later)
        assert exc.value.available == Decimal("200")
        assert ledger.get_subscriber_info(sid).balance == Decimal("150")
        assert ledger.get_provider_info(pid).balance == Decimal("100")
        assert ledger.providers.get(pid).next_withdrawal_utc == _now() + timedelta(days=30)

    def test_non_positive_amount_rejected(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        with pytest.raises(InvalidAmount):
            ledger.withdraw_earnings(pid, Decimal("0"), "0xp", _now() + timedelta(days=30))

    def test_withdraw_requires_owner(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        with pytest.raises(NotOwner):
            ledger.withdraw_earnings(pid, Decimal("1"), "0xq", _now() + timedelta(days=30))

    def test_inactive_provider_cannot_withdraw(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        _subscriber(ledger, pid)
        ledger.set_provider_active(pid, False)
        with pytest.raises(ProviderInactive):
            ledger.withdraw_earnings(pid, Decimal("50"), "0xp", _now() + timedelta(days=30))


class TestLinks:
    def test_links_are_copies(self) -> None:
        ledger = _ledger()
        pid = _provider(ledger)
        _subscriber(ledger, pid)
        links = ledger.get_provider_links(pid)
        links[0].paused = True
        assert not ledger.get_provider_links(pid)[0].paused
