"""Tests for the subscriber registry — proves escrow bookkeeping rules."""

import pytest
from decimal import Decimal

from subledger.errors import (
    DepositTooLow,
    InvalidAmount,
    NoProvidersSpecified,
    NotOwner,
    SubscriberNotRegistered,
)
from subledger.ledger.state import LedgerState
from subledger.ledger.subscribers import SubscriberRegistry


@pytest.fixture
def registry() -> SubscriberRegistry:
    return SubscriberRegistry(LedgerState())


class TestRegister:
    def test_sequential_ids(self, registry: SubscriberRegistry) -> None:
        assert registry.register("0xa", Decimal("10"), [1], Decimal("5")) == 1
        assert registry.register("0xb", Decimal("10"), [1], Decimal("5")) == 2
        assert registry.count == 2

    def test_deposit_held_in_escrow(self, registry: SubscriberRegistry) -> None:
        sid = registry.register("0xa", Decimal("250"), [3, 1], Decimal("5"))
        info = registry.info(sid)
        assert info.owner == "0xa"
        assert info.balance == Decimal("250")
        assert info.provider_ids == (3, 1)

    def test_empty_provider_list_rejected(self, registry: SubscriberRegistry) -> None:
        with pytest.raises(NoProvidersSpecified):
            registry.register("0xa", Decimal("250"), [], Decimal("5"))
        assert registry.count == 0

    def test_deposit_below_minimum_rejected(self, registry: SubscriberRegistry) -> None:
        with pytest.raises(DepositTooLow) as exc:
            registry.register("0xa", Decimal("4.99"), [1], Decimal("5"))
        assert exc.value.deposit == Decimal("4.99")
        assert registry.count == 0


class TestLookup:
    def test_unknown_id(self, registry: SubscriberRegistry) -> None:
        with pytest.raises(SubscriberNotRegistered, match="Subscriber not registered: 7"):
            registry.get(7)
        assert registry.owner_of(7) is None

    def test_owner_of(self, registry: SubscriberRegistry) -> None:
        sid = registry.register("0xa", Decimal("10"), [1], Decimal("5"))
        assert registry.owner_of(sid) == "0xa"

    def test_list_ids(self, registry: SubscriberRegistry) -> None:
        registry.register("0xa", Decimal("10"), [1], Decimal("5"))
        registry.register("0xb", Decimal("10"), [1], Decimal("5"))
        assert registry.list_ids() == [1, 2]


class TestBalance:
    def test_owner_can_deposit(self, registry: SubscriberRegistry) -> None:
        sid = registry.register("0xa", Decimal("10"), [1], Decimal("5"))
        assert registry.increase_balance(sid, Decimal("15"), "0xa") == Decimal("25")

    def test_other_caller_cannot_deposit(self, registry: SubscriberRegistry) -> None:
        sid = registry.register("0xa", Decimal("10"), [1], Decimal("5"))
        with pytest.raises(NotOwner):
            registry.increase_balance(sid, Decimal("15"), "0xb")
        assert registry.info(sid).balance == Decimal("10")

    def test_non_positive_deposit_rejected(self, registry: SubscriberRegistry) -> None:
        sid = registry.register("0xa", Decimal("10"), [1], Decimal("5"))
        with pytest.raises(InvalidAmount):
            registry.increase_balance(sid, Decimal("-1"), "0xa")

    def test_decrease(self, registry: SubscriberRegistry) -> None:
        sid = registry.register("0xa", Decimal("10"), [1], Decimal("5"))
        assert registry.decrease_balance(sid, Decimal("4")) == Decimal("6")

    def test_add_provider_ids(self, registry: SubscriberRegistry) -> None:
        sid = registry.register("0xa", Decimal("10"), [1], Decimal("5"))
        registry.add_provider_ids(sid, [2, 3])
        assert registry.info(sid).provider_ids == (1, 2, 3)
