"""Provider registry — providers, their fees, earnings and link lists.

Registration enforces, in order:
- the configured capacity (ids are never reused, so removed providers
  still count against it)
- the minimum fee supplied by the price oracle
- uniqueness of the (key, owner) hash among live providers

A provider's earned balance is credited when a subscriber links to it
(the first cycle is charged immediately) and on each settlement pass.
Earnings are withdrawn by the owner, at most once per withdrawal lock
window, and every withdrawal first runs a settlement pass so that the
withdrawable balance includes all cycles already due.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from subledger.config import LedgerConfig
from subledger.errors import (
    AlreadyLinked,
    CapacityExceeded,
    DuplicateKey,
    FeeTooLow,
    InsufficientBalance,
    InvalidAmount,
    NotOwner,
    ProviderInactive,
    StateUnchanged,
    WithdrawalLocked,
)
from subledger.ledger.billing import BillingEngine
from subledger.ledger.ids import IdentifierAllocator
from subledger.ledger.state import LedgerState
from subledger.ledger.subscribers import SubscriberRegistry
from subledger.models.ledger import (
    BillingCycle,
    Provider,
    ProviderInfo,
    SettlementReport,
    SubscriptionLink,
    key_hash,
)


class ProviderRegistry:
    """Owns the provider table and the provider side of every link.

    Usage:
        registry = ProviderRegistry(state, subscribers, billing, config)
        pid = registry.register("0xowner", "my-key", Decimal("100"), Decimal("10"))
        registry.add_link(pid, subscriber_id)
        remaining, report = registry.withdraw_earnings(pid, Decimal("50"), "0xowner")
    """

    def __init__(
        self,
        state: LedgerState,
        subscribers: SubscriberRegistry,
        billing: BillingEngine,
        config: LedgerConfig,
    ) -> None:
        self._state = state
        self._subscribers = subscribers
        self._billing = billing
        self._config = config
        self._ids = IdentifierAllocator(state, "provider_counter")

    @property
    def count(self) -> int:
        """Number of provider ids issued, including removed providers."""
        return self._ids.current

    def register(
        self,
        owner: str,
        key: str,
        fee: Decimal,
        minimum_fee: Decimal,
        now: Optional[datetime] = None,
    ) -> int:
        """Register a new active provider and return its id.

        Raises:
            CapacityExceeded: If the next id would exceed max_providers.
            FeeTooLow: If fee is below minimum_fee.
            DuplicateKey: If this owner already registered this key.
        """
        limit = self._config.max_providers
        if limit is not None and self._ids.peek() > limit:
            raise CapacityExceeded(limit)
        if fee < minimum_fee:
            raise FeeTooLow(fee, minimum_fee)
        digest = key_hash(key, owner)
        existing = self._state.provider_keys.get(digest)
        if existing is not None:
            raise DuplicateKey(owner, existing)
        if now is None:
            now = datetime.now(timezone.utc)

        provider_id = self._ids.next_id()
        self._state.providers[provider_id] = Provider(
            provider_id=provider_id,
            owner=owner,
            key_hash=digest,
            fee_per_cycle=fee,
            billing_cycle=self._config.default_billing_cycle,
            next_withdrawal_utc=now + self._config.withdrawal_lock,
        )
        self._state.provider_keys[digest] = provider_id
        return provider_id

    def get(self, provider_id: int) -> Provider:
        """Look up a live provider or raise ProviderNotFound."""
        return self._state.live_provider(provider_id)

    def _owned(self, provider_id: int, caller: str) -> Provider:
        provider = self.get(provider_id)
        if provider.owner != caller:
            raise NotOwner(caller, provider.owner)
        return provider

    def remove(self, provider_id: int, caller: str) -> Decimal:
        """Remove a provider and return its earned balance for refund.

        Linked subscribers are not settled or updated: their provider_ids
        keep listing the removed provider.
        """
        provider = self._owned(provider_id, caller)
        refund = provider.balance
        self._state.provider_keys.pop(provider.key_hash, None)
        provider.tombstone()
        return refund

    def update_fee(
        self,
        provider_id: int,
        new_fee: Decimal,
        new_cycle: BillingCycle,
        caller: str,
        minimum_fee: Decimal,
    ) -> Provider:
        """Change the fee, and the billing cycle if it differs.

        Due times already scheduled on existing links are not recomputed;
        the new cycle applies from each link's next settlement onwards.
        """
        provider = self._owned(provider_id, caller)
        if new_fee < minimum_fee:
            raise FeeTooLow(new_fee, minimum_fee)
        provider.fee_per_cycle = new_fee
        if provider.billing_cycle != new_cycle:
            provider.billing_cycle = new_cycle
        return provider

    def set_active(self, provider_id: int, new_state: bool) -> Provider:
        """Open or close a provider to new subscribers.

        Callers must check administrator rights first. Billing of existing
        links is unaffected by the flag.
        """
        provider = self.get(provider_id)
        if provider.is_active == new_state:
            raise StateUnchanged(provider_id, new_state)
        provider.is_active = new_state
        return provider

    def add_link(
        self,
        provider_id: int,
        subscriber_id: int,
        now: Optional[datetime] = None,
    ) -> SubscriptionLink:
        """Link a subscriber to a provider, charging the first cycle now.

        Raises:
            ProviderNotFound: If the provider is absent.
            ProviderInactive: If the provider is not accepting subscribers.
            AlreadyLinked: If the subscriber is already in the link list.
            InsufficientBalance: If escrow does not cover one cycle.
        """
        provider = self.get(provider_id)
        if not provider.is_active:
            raise ProviderInactive(provider_id)
        if provider.find_link(subscriber_id) is not None:
            raise AlreadyLinked(provider_id, subscriber_id)
        subscriber = self._subscribers.get(subscriber_id)
        fee = provider.fee_per_cycle
        if subscriber.balance < fee:
            raise InsufficientBalance(fee, subscriber.balance)
        if now is None:
            now = datetime.now(timezone.utc)

        self._subscribers.decrease_balance(subscriber_id, fee)
        provider.balance += fee
        link = SubscriptionLink(
            subscriber_id=subscriber_id,
            next_billing_utc=now + self._config.cycle_duration(provider.billing_cycle),
        )
        provider.links.append(link)
        return link

    def withdraw_earnings(
        self,
        provider_id: int,
        amount: Decimal,
        caller: str,
        now: Optional[datetime] = None,
    ) -> Tuple[Decimal, SettlementReport]:
        """Settle all due links, then debit amount from earnings.

        Paying the caller is left to the settlement transfer, after this
        ledger mutation.

        Returns:
            Tuple of (remaining balance, report of the settlement pass).
        """
        provider = self._owned(provider_id, caller)
        if amount <= Decimal("0"):
            raise InvalidAmount(amount)
        if now is None:
            now = datetime.now(timezone.utc)
        if now < provider.next_withdrawal_utc:
            raise WithdrawalLocked(provider.next_withdrawal_utc)

        report = self._billing.process_payments(provider_id, now)
        if amount > provider.balance:
            raise InsufficientBalance(amount, provider.balance)

        provider.balance -= amount
        provider.next_withdrawal_utc = now + self._config.withdrawal_lock
        return provider.balance, report

    def info(self, provider_id: int) -> ProviderInfo:
        provider = self.get(provider_id)
        return ProviderInfo(
            owner=provider.owner,
            fee_per_cycle=provider.fee_per_cycle,
            balance=provider.balance,
            link_count=len(provider.links),
            is_active=provider.is_active,
        )

    def links(self, provider_id: int) -> List[SubscriptionLink]:
        """Copy of a provider's link list, in join order."""
        return [replace(link) for link in self.get(provider_id).links]

    def list_ids(self) -> List[int]:
        return [
            pid for pid, p in self._state.providers.items() if not p.is_absent
        ]
