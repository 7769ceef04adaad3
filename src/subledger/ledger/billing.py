"""Billing engine — settles every due link of one provider.

A settlement pass walks the provider's link list once, in list order.
For each link that is not paused and whose due time has passed:

- If the subscriber's escrow covers the fee, the fee moves from the
  subscriber to the provider and the link's next due time becomes
  now + one cycle. A subscriber billed late pays for one cycle only,
  never for the interim cycles that were missed.
- Otherwise the link is paused. Pausing is not an error: it is the
  normal outcome for a subscriber who has run out of escrow, and the
  link stays paused until its subscriber resumes it.

Paused and not-yet-due links are left untouched, so running the pass
again before any link falls due changes nothing.

Billing never runs on a timer. A pass happens only when a caller asks
for one, today as part of an earnings withdrawal.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from subledger.config import LedgerConfig
from subledger.errors import ProviderInactive
from subledger.ledger.state import LedgerState
from subledger.ledger.subscribers import SubscriberRegistry
from subledger.models.ledger import SettlementReport


class BillingEngine:
    """Runs settlement passes over provider link lists.

    Usage:
        engine = BillingEngine(state, subscribers, config)
        report = engine.process_payments(provider_id, now)
        report.balance   # provider balance after the pass
    """

    def __init__(
        self,
        state: LedgerState,
        subscribers: SubscriberRegistry,
        config: LedgerConfig,
    ) -> None:
        self._state = state
        self._subscribers = subscribers
        self._config = config

    def process_payments(
        self,
        provider_id: int,
        now: Optional[datetime] = None,
    ) -> SettlementReport:
        """Settle every due link of a provider.

        Raises:
            ProviderNotFound: If the provider is absent.
            ProviderInactive: If the provider is not active.
        """
        provider = self._state.live_provider(provider_id)
        if not provider.is_active:
            raise ProviderInactive(provider_id)
        if now is None:
            now = datetime.now(timezone.utc)

        fee = provider.fee_per_cycle
        cycle = self._config.cycle_duration(provider.billing_cycle)
        charged: List[int] = []
        paused: List[int] = []

        for link in provider.links:
            if not link.is_due(now):
                continue
            subscriber = self._subscribers.get(link.subscriber_id)
            if subscriber.balance >= fee:
                self._subscribers.decrease_balance(link.subscriber_id, fee)
                provider.balance += fee
                link.next_billing_utc = now + cycle
                charged.append(link.subscriber_id)
            else:
                link.paused = True
                paused.append(link.subscriber_id)

        return SettlementReport(
            provider_id=provider_id,
            fee_per_cycle=fee,
            charged=tuple(charged),
            paused=tuple(paused),
            collected=fee * len(charged),
            balance=provider.balance,
        )

    def due_links(self, provider_id: int, now: datetime) -> List[int]:
        """Subscriber ids whose links would be settled by a pass at now."""
        provider = self._state.live_provider(provider_id)
        return [link.subscriber_id for link in provider.links if link.is_due(now)]
