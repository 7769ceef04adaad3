"""Subscription ledger — the single entry point to the billing state machine.

The ledger is a single-writer state machine. Each public operation runs
inside atomic(), a transaction scope over the shared LedgerState: if any
exception escapes the scope, the state is restored to its snapshot, so an
operation either commits every balance and link change it made or leaves
the ledger exactly as it found it. A snapshot is a deep copy of the whole
state, so only the outermost scope takes one: nested scopes join it, and
an exception escaping any of them unwinds to that snapshot. A nested
block whose failure the caller catches and survives must be opened with
atomic(savepoint=True).

Callers that must talk to the outside world after a mutation (moving
tokens, for instance) open their own atomic() around both steps. The
mutation is applied first, so anything the external call triggers sees
the updated balances, and an external call that fails still reverts it.

Minimum fee and deposit values are passed in by the caller; the ledger
never queries a price source itself.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterator, List, Optional, Sequence, Tuple

from subledger.config import LedgerConfig
from subledger.errors import NoProvidersSpecified, NotOwner
from subledger.ledger.billing import BillingEngine
from subledger.ledger.links import LinkMatcher, LinkTable
from subledger.ledger.providers import ProviderRegistry
from subledger.ledger.state import LedgerState
from subledger.ledger.subscribers import SubscriberRegistry
from subledger.models.ledger import (
    BillingCycle,
    ProviderInfo,
    SettlementReport,
    SubscriberInfo,
    SubscriptionLink,
)


class SubscriptionLedger:
    """Providers, subscribers, links and billing behind one atomic API.

    Usage:
        ledger = SubscriptionLedger(LedgerConfig())
        pid = ledger.register_provider("0xp", "key", Decimal("100"), minimum_fee=Decimal("1"))
        sid = ledger.register_subscriber(
            "0xs", Decimal("250"), [pid], minimum_deposit=Decimal("1"),
        )
        ledger.process_payments(pid)
    """

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        state: Optional[LedgerState] = None,
        matcher: Optional[LinkMatcher] = None,
    ) -> None:
        self._config = config or LedgerConfig()
        self._state = state or LedgerState()
        self._subscribers = SubscriberRegistry(self._state)
        self._billing = BillingEngine(self._state, self._subscribers, self._config)
        self._providers = ProviderRegistry(
            self._state, self._subscribers, self._billing, self._config,
        )
        self._links = LinkTable(self._state, self._subscribers, matcher)
        self._depth = 0

    @property
    def config(self) -> LedgerConfig:
        return self._config

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def providers(self) -> ProviderRegistry:
        return self._providers

    @property
    def subscribers(self) -> SubscriberRegistry:
        return self._subscribers

    @contextmanager
    def atomic(self, savepoint: bool = False) -> Iterator[LedgerState]:
        """Transaction scope: restore the state if the block raises.

        The snapshot costs O(providers + subscribers + links). Nested
        scopes take none unless savepoint is set.
        """
        snapshot = None
        if savepoint or self._depth == 0:
            snapshot = self._state.snapshot()
        self._depth += 1
        try:
            yield self._state
        except BaseException:
            if snapshot is not None:
                self._state.restore(snapshot)
            raise
        finally:
            self._depth -= 1

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def register_provider(
        self,
        owner: str,
        key: str,
        fee: Decimal,
        minimum_fee: Decimal,
        now: Optional[datetime] = None,
    ) -> int:
        with self.atomic():
            return self._providers.register(owner, key, fee, minimum_fee, now)

    def remove_provider(self, provider_id: int, caller: str) -> Decimal:
        with self.atomic():
            return self._providers.remove(provider_id, caller)

    def update_provider_fee(
        self,
        provider_id: int,
        new_fee: Decimal,
        new_cycle: BillingCycle,
        caller: str,
        minimum_fee: Decimal,
    ) -> None:
        with self.atomic():
            self._providers.update_fee(
                provider_id, new_fee, new_cycle, caller, minimum_fee,
            )

    def set_provider_active(self, provider_id: int, new_state: bool) -> None:
        with self.atomic():
            self._providers.set_active(provider_id, new_state)

    def withdraw_earnings(
        self,
        provider_id: int,
        amount: Decimal,
        caller: str,
        now: Optional[datetime] = None,
    ) -> Tuple[Decimal, SettlementReport]:
        with self.atomic():
            return self._providers.withdraw_earnings(
                provider_id, amount, caller, now,
            )

    # ------------------------------------------------------------------
    # Subscribers and links
    # ------------------------------------------------------------------

    def register_subscriber(
        self,
        owner: str,
        deposit: Decimal,
        provider_ids: Sequence[int],
        minimum_deposit: Decimal,
        now: Optional[datetime] = None,
    ) -> int:
        """Register a subscriber and charge one cycle per listed provider.

        All-or-nothing: if any provider cannot be linked, no subscriber
        record is kept and no provider is credited.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        with self.atomic():
            subscriber_id = self._subscribers.register(
                owner, deposit, provider_ids, minimum_deposit,
            )
            for provider_id in provider_ids:
                self._providers.add_link(provider_id, subscriber_id, now)
            return subscriber_id

    def subscribe(
        self,
        subscriber_id: int,
        provider_ids: Sequence[int],
        caller: str,
        now: Optional[datetime] = None,
    ) -> List[SubscriptionLink]:
        """Link an existing subscriber to more providers, all-or-nothing."""
        if not provider_ids:
            raise NoProvidersSpecified()
        if now is None:
            now = datetime.now(timezone.utc)
        with self.atomic():
            subscriber = self._subscribers.get(subscriber_id)
            if subscriber.owner != caller:
                raise NotOwner(caller, subscriber.owner)
            self._subscribers.add_provider_ids(subscriber_id, provider_ids)
            return [
                self._providers.add_link(provider_id, subscriber_id, now)
                for provider_id in provider_ids
            ]

    def deposit(self, subscriber_id: int, amount: Decimal, caller: str) -> Decimal:
        with self.atomic():
            return self._subscribers.increase_balance(subscriber_id, amount, caller)

    def pause(
        self, subscriber_id: int, provider_id: int, caller: str,
    ) -> SubscriptionLink:
        with self.atomic():
            return self._links.pause(subscriber_id, provider_id, caller)

    def resume(
        self, subscriber_id: int, provider_id: int, caller: str,
    ) -> SubscriptionLink:
        with self.atomic():
            return self._links.resume(subscriber_id, provider_id, caller)

    # ------------------------------------------------------------------
    # Billing
    # ------------------------------------------------------------------

    def settle(
        self, provider_id: int, now: Optional[datetime] = None,
    ) -> SettlementReport:
        """Run one settlement pass and return its full report."""
        with self.atomic():
            return self._billing.process_payments(provider_id, now)

    def process_payments(
        self, provider_id: int, now: Optional[datetime] = None,
    ) -> Decimal:
        """Run one settlement pass and return the provider's balance."""
        return self.settle(provider_id, now).balance

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    def get_provider_info(self, provider_id: int) -> ProviderInfo:
        return self._providers.info(provider_id)

    def get_subscriber_info(self, subscriber_id: int) -> SubscriberInfo:
        return self._subscribers.info(subscriber_id)

    def get_provider_links(self, provider_id: int) -> List[SubscriptionLink]:
        return self._providers.links(provider_id)
