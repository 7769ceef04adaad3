"""Subscriber registry — escrowed balances and linked provider ids.

A subscriber record is created by registration and never removed. Its
owner is the only principal allowed to add funds to it.

Registration here only creates the record. Charging the first cycle of
each listed provider is done by the ledger core, inside the same
transaction, through ProviderRegistry.add_link().
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional, Sequence

from subledger.errors import (
    DepositTooLow,
    InvalidAmount,
    NoProvidersSpecified,
    NotOwner,
    SubscriberNotRegistered,
)
from subledger.ledger.ids import IdentifierAllocator
from subledger.ledger.state import LedgerState
from subledger.models.ledger import Subscriber, SubscriberInfo


class SubscriberRegistry:
    """Owns the subscriber table.

    Usage:
        registry = SubscriberRegistry(state)
        sid = registry.register("0xabc", Decimal("250"), [1, 2], Decimal("10"))
        registry.increase_balance(sid, Decimal("50"), caller="0xabc")
    """

    def __init__(self, state: LedgerState) -> None:
        self._state = state
        self._ids = IdentifierAllocator(state, "subscriber_counter")

    @property
    def count(self) -> int:
        return self._ids.current

    def register(
        self,
        owner: str,
        deposit: Decimal,
        provider_ids: Sequence[int],
        minimum_deposit: Decimal,
    ) -> int:
        """Create a subscriber record holding the deposit in escrow.

        provider_ids is stored as given. Duplicates are not removed here;
        they make the second add_link() for that provider fail.
        """
        if not provider_ids:
            raise NoProvidersSpecified()
        if deposit < minimum_deposit:
            raise DepositTooLow(deposit, minimum_deposit)

        subscriber_id = self._ids.next_id()
        self._state.subscribers[subscriber_id] = Subscriber(
            subscriber_id=subscriber_id,
            owner=owner,
            balance=deposit,
            provider_ids=list(provider_ids),
        )
        return subscriber_id

    def get(self, subscriber_id: int) -> Subscriber:
        """Look up a registered subscriber or raise SubscriberNotRegistered."""
        record = self._state.subscribers.get(subscriber_id)
        if record is None or not record.is_registered:
            raise SubscriberNotRegistered(subscriber_id)
        return record

    def owner_of(self, subscriber_id: int) -> Optional[str]:
        """Owner of a subscriber id, or None if unregistered."""
        record = self._state.subscribers.get(subscriber_id)
        return record.owner if record is not None else None

    def increase_balance(
        self, subscriber_id: int, amount: Decimal, caller: str,
    ) -> Decimal:
        """Add funds to escrow. Moving the funds into custody is the caller's job."""
        record = self.get(subscriber_id)
        if record.owner != caller:
            raise NotOwner(caller, record.owner)
        if amount <= Decimal("0"):
            raise InvalidAmount(amount)
        record.balance += amount
        return record.balance

    def decrease_balance(self, subscriber_id: int, amount: Decimal) -> Decimal:
        """Remove funds from escrow without checking sufficiency.

        Callers must verify the balance covers amount beforehand.
        """
        record = self.get(subscriber_id)
        record.balance -= amount
        return record.balance

    def add_provider_ids(self, subscriber_id: int, provider_ids: Sequence[int]) -> None:
        """Append provider ids to an existing subscriber's list."""
        self.get(subscriber_id).provider_ids.extend(provider_ids)

    def info(self, subscriber_id: int) -> SubscriberInfo:
        record = self.get(subscriber_id)
        return SubscriberInfo(
            owner=record.owner,
            balance=record.balance,
            provider_ids=tuple(record.provider_ids),
        )

    def list_ids(self) -> List[int]:
        return [
            sid for sid, s in self._state.subscribers.items() if s.is_registered
        ]
