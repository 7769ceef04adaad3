"""Subscription service — unified facade over the ledger and its collaborators.

This is the primary interface for programmatic access. It orchestrates:
- Minimum fee/deposit lookup (price oracle)
- Ledger mutations (providers, subscribers, links, billing)
- Token movements into and out of custody (settlement transfer)
- Privileged operations (access control)
- Audit trail (event log) and state snapshots (state store)

All operations return a ServiceResult. Named ledger failures become
unsuccessful results carrying the failure's code and details.

Ordering inside every mutating operation:
1. Read any oracle minimum (fails before anything is touched).
2. Apply the ledger mutation.
3. Move tokens, inside the same transaction scope as step 2. A transfer
   that moved nothing (TransferFailed) reverts the mutation. A transfer
   that was broadcast but not confirmed (TransferUnconfirmed) commits it:
   the tokens may be gone, so the ledger must not offer them again. The
   result carries a warning and the transaction hash.
4. Record audit events and persist state. The ledger change and any token
   movement are final by now: failures here are reported as warnings and
   flag the service as degraded, they never roll back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Sequence

from subledger.config import LedgerConfig
from subledger.errors import LedgerError, NotAdministrator, TransferUnconfirmed
from subledger.ledger.core import SubscriptionLedger
from subledger.ledger.links import LinkMatcher
from subledger.models.ledger import (
    BillingCycle,
    ProviderInfo,
    SubscriberInfo,
)
from subledger.persistence.event_log import EventLog, EventRecord, LedgerEvent
from subledger.persistence.state_store import StateStore
from subledger.settlement.access import AccessControl
from subledger.settlement.oracle import PriceOracle
from subledger.settlement.transfer import SettlementTransfer


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class SubscriptionService:
    """Recurring-billing facade.

    Usage:
        service = SubscriptionService(
            oracle=StaticPriceOracle(Decimal("10"), Decimal("10")),
            transfer=InMemoryTransfer(enforce_balances=False),
            access=StaticAccessControl({"0xadmin"}),
        )
        pid = service.register_provider("0xp", "key", Decimal("100")).data["provider_id"]
        service.register_subscriber("0xs", Decimal("250"), [pid])
        service.withdraw_earnings(pid, Decimal("100"), caller="0xp")

    Persistence (optional):
        service = SubscriptionService(..., event_log=log, state_store=store)
        # State is loaded on construction and saved after each commit.
    """

    def __init__(
        self,
        oracle: PriceOracle,
        transfer: SettlementTransfer,
        access: Optional[AccessControl] = None,
        config: Optional[LedgerConfig] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
        matcher: Optional[LinkMatcher] = None,
    ) -> None:
        self._oracle = oracle
        self._transfer = transfer
        self._access = access
        self._event_log = event_log
        self._state_store = state_store

        state = state_store.load() if state_store is not None else None
        self._ledger = SubscriptionLedger(config, state, matcher)

        self._audit_degraded = False
        self._persistence_degraded = False
        self._unconfirmed: list[TransferUnconfirmed] = []

    @property
    def ledger(self) -> SubscriptionLedger:
        return self._ledger

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def register_provider(
        self,
        owner: str,
        key: str,
        fee: Decimal,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Register a provider charging fee per cycle."""
        try:
            minimum = self._oracle.minimum_fee()
            provider_id = self._ledger.register_provider(
                owner, key, fee, minimum, now,
            )
        except LedgerError as e:
            return self._failure(e)

        provider = self._ledger.providers.get(provider_id)
        return self._committed(
            [LedgerEvent.provider_registered(
                owner, provider_id, fee, provider.billing_cycle,
            )],
            {"provider_id": provider_id},
            now,
        )

    def remove_provider(self, provider_id: int, caller: str) -> ServiceResult:
        """Remove a provider and pay its earned balance to the owner."""
        pending = None
        try:
            with self._ledger.atomic():
                refund = self._ledger.remove_provider(provider_id, caller)
                if refund > Decimal("0"):
                    pending = self._move(self._transfer.push_to, caller, refund)
        except LedgerError as e:
            return self._failure(e)

        return self._committed(
            [LedgerEvent.provider_removed(caller, provider_id, refund)],
            {"provider_id": provider_id, "refund": refund},
            pending=pending,
        )

    def update_provider_fee(
        self,
        provider_id: int,
        new_fee: Decimal,
        new_cycle: BillingCycle,
        caller: str,
    ) -> ServiceResult:
        """Change a provider's fee and billing cycle."""
        try:
            minimum = self._oracle.minimum_fee()
            self._ledger.update_provider_fee(
                provider_id, new_fee, new_cycle, caller, minimum,
            )
        except LedgerError as e:
            return self._failure(e)

        return self._committed(
            [LedgerEvent.fee_updated(caller, provider_id, new_fee, new_cycle)],
            {"provider_id": provider_id},
        )

    def set_provider_active(
        self, provider_id: int, new_state: bool, caller: str,
    ) -> ServiceResult:
        """Open or close a provider to new subscribers (administrators only)."""
        try:
            if self._access is None or not self._access.is_administrator(caller):
                raise NotAdministrator(caller)
            self._ledger.set_provider_active(provider_id, new_state)
        except LedgerError as e:
            return self._failure(e)

        return self._committed(
            [LedgerEvent.status_changed(caller, provider_id, new_state)],
            {"provider_id": provider_id, "is_active": new_state},
        )

    def withdraw_earnings(
        self,
        provider_id: int,
        amount: Decimal,
        caller: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Settle due links, then pay amount of earnings to the owner."""
        try:
            with self._ledger.atomic():
                remaining, report = self._ledger.withdraw_earnings(
                    provider_id, amount, caller, now,
                )
                pending = self._move(self._transfer.push_to, caller, amount)
        except LedgerError as e:
            return self._failure(e)

        events = LedgerEvent.settlement(caller, report)
        events.append(LedgerEvent.earnings_withdrawn(
            caller, provider_id, amount, remaining,
        ))
        return self._committed(
            events,
            {
                "provider_id": provider_id,
                "amount": amount,
                "remaining": remaining,
                "charged": list(report.charged),
                "paused": list(report.paused),
            },
            now,
            pending,
        )

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def register_subscriber(
        self,
        owner: str,
        deposit: Decimal,
        provider_ids: Sequence[int],
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Register a subscriber, pull its deposit, charge each provider once."""
        try:
            minimum = self._oracle.minimum_deposit()
            with self._ledger.atomic():
                subscriber_id = self._ledger.register_subscriber(
                    owner, deposit, provider_ids, minimum, now,
                )
                pending = self._move(self._transfer.pull_from, owner, deposit)
        except LedgerError as e:
            return self._failure(e)

        events = [LedgerEvent.subscriber_registered(
            owner, subscriber_id, deposit, provider_ids,
        )]
        events.extend(self._link_events(subscriber_id, provider_ids, owner))
        info = self._ledger.get_subscriber_info(subscriber_id)
        return self._committed(
            events,
            {"subscriber_id": subscriber_id, "balance": info.balance},
            now,
            pending,
        )

    def deposit(
        self, subscriber_id: int, amount: Decimal, caller: str,
    ) -> ServiceResult:
        """Pull amount from the caller into the subscriber's escrow."""
        try:
            with self._ledger.atomic():
                balance = self._ledger.deposit(subscriber_id, amount, caller)
                pending = self._move(self._transfer.pull_from, caller, amount)
        except LedgerError as e:
            return self._failure(e)

        return self._committed(
            [LedgerEvent.deposited(caller, subscriber_id, amount)],
            {"subscriber_id": subscriber_id, "balance": balance},
            pending=pending,
        )

    def subscribe(
        self,
        subscriber_id: int,
        provider_ids: Sequence[int],
        caller: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Link an existing subscriber to more providers, charging each once."""
        try:
            self._ledger.subscribe(subscriber_id, provider_ids, caller, now)
        except LedgerError as e:
            return self._failure(e)

        info = self._ledger.get_subscriber_info(subscriber_id)
        return self._committed(
            self._link_events(subscriber_id, provider_ids, caller),
            {"subscriber_id": subscriber_id, "balance": info.balance},
            now,
        )

    def pause_subscription(
        self, subscriber_id: int, provider_id: int, caller: str,
    ) -> ServiceResult:
        return self._toggle_link(subscriber_id, provider_id, caller, pause=True)

    def resume_subscription(
        self, subscriber_id: int, provider_id: int, caller: str,
    ) -> ServiceResult:
        return self._toggle_link(subscriber_id, provider_id, caller, pause=False)

    # ------------------------------------------------------------------
    # Billing
    # ------------------------------------------------------------------

    def process_payments(
        self,
        provider_id: int,
        caller: str = "system",
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Run a settlement pass for one provider."""
        try:
            report = self._ledger.settle(provider_id, now)
        except LedgerError as e:
            return self._failure(e)

        return self._committed(
            LedgerEvent.settlement(caller, report),
            {
                "provider_id": provider_id,
                "balance": report.balance,
                "charged": list(report.charged),
                "paused": list(report.paused),
            },
            now,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_provider_info(self, provider_id: int) -> Optional[ProviderInfo]:
        """Provider summary, or None if absent."""
        try:
            return self._ledger.get_provider_info(provider_id)
        except LedgerError:
            return None

    def get_subscriber_info(self, subscriber_id: int) -> Optional[SubscriberInfo]:
        """Subscriber summary, or None if unregistered."""
        try:
            return self._ledger.get_subscriber_info(subscriber_id)
        except LedgerError:
            return None

    def provider_history(self, provider_id: int) -> list[EventRecord]:
        """Recorded events for one provider, oldest first."""
        if self._event_log is None:
            return []
        return self._event_log.provider_history(provider_id)

    def subscriber_history(self, subscriber_id: int) -> list[EventRecord]:
        """Recorded events for one subscriber, oldest first."""
        if self._event_log is None:
            return []
        return self._event_log.subscriber_history(subscriber_id)

    def status(self) -> dict[str, Any]:
        """Return system-wide status summary."""
        state = self._ledger.state
        providers = self._ledger.providers
        status: dict[str, Any] = {
            "providers": {
                "issued": providers.count,
                "live": len(providers.list_ids()),
                "active": sum(
                    1 for pid in providers.list_ids()
                    if providers.get(pid).is_active
                ),
                "capacity": self._ledger.config.max_providers,
            },
            "subscribers": {"registered": len(self._ledger.subscribers.list_ids())},
            "balances": {
                "escrow": str(state.total_escrow()),
                "earned": str(state.total_earned()),
            },
            "events": self._event_log.count if self._event_log is not None else 0,
            "audit_degraded": self._audit_degraded,
            "persistence_degraded": self._persistence_degraded,
            "unconfirmed_transfers": [e.tx_hash for e in self._unconfirmed],
        }
        if self._event_log is not None:
            totals = self._event_log.custody_totals()
            ledger_total = state.total_escrow() + state.total_earned()
            status["custody"] = {
                "recorded": str(totals.held),
                "unconfirmed": str(totals.unconfirmed),
                "reconciled": totals.held == ledger_total,
            }
        return status

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _move(
        self,
        move: Callable[[str, Decimal], None],
        party: str,
        amount: Decimal,
    ) -> Optional[TransferUnconfirmed]:
        """Run a custody movement inside the caller's atomic() scope.

        TransferFailed propagates and reverts the scope. TransferUnconfirmed
        is returned instead, so the scope commits.
        """
        try:
            move(party, amount)
        except TransferUnconfirmed as e:
            self._unconfirmed.append(e)
            return e
        return None

    def _toggle_link(
        self,
        subscriber_id: int,
        provider_id: int,
        caller: str,
        pause: bool,
    ) -> ServiceResult:
        try:
            if pause:
                link = self._ledger.pause(subscriber_id, provider_id, caller)
            else:
                link = self._ledger.resume(subscriber_id, provider_id, caller)
        except LedgerError as e:
            return self._failure(e)

        # The matched link may belong to another subscriber of the caller
        return self._committed(
            [LedgerEvent.link_toggled(
                caller, link.subscriber_id, provider_id, link.paused,
            )],
            {
                "provider_id": provider_id,
                "subscriber_id": link.subscriber_id,
                "paused": link.paused,
            },
        )

    def _link_events(
        self, subscriber_id: int, provider_ids: Sequence[int], actor: str,
    ) -> list[LedgerEvent]:
        return [
            LedgerEvent.linked(
                actor, subscriber_id, provider_id,
                self._ledger.providers.get(provider_id).fee_per_cycle,
            )
            for provider_id in provider_ids
        ]

    def _failure(self, error: LedgerError) -> ServiceResult:
        return ServiceResult(success=False, errors=[str(error)], data=error.to_dict())

    def _committed(
        self,
        events: list[LedgerEvent],
        data: dict[str, Any],
        now: Optional[datetime] = None,
        pending: Optional[TransferUnconfirmed] = None,
    ) -> ServiceResult:
        """Record audit events and persist after a ledger commit.

        MUST NOT roll back: the ledger mutation and any token movement
        are already final. Every event is attempted; failures become
        warnings.
        """
        warnings: list[str] = []
        if pending is not None:
            events = [*events, LedgerEvent.transfer_unconfirmed(pending)]
            data = {**data, "tx_hash": pending.tx_hash}
            warnings.append(f"{pending}; ledger change kept")

        failed = [
            err for err in (self._record_event(event, now) for event in events)
            if err
        ]
        if failed:
            warnings.append(
                f"Audit trail degraded: {len(failed)} of {len(events)} events "
                f"not recorded ({'; '.join(failed)}); ledger change committed"
            )
        err = self._safe_persist()
        if err:
            warnings.append(err)
        if warnings:
            data = {**data, "warning": "; ".join(warnings)}
        return ServiceResult(success=True, data=data)

    def _record_event(
        self, event: LedgerEvent, now: Optional[datetime] = None,
    ) -> Optional[str]:
        """Record one audit event. Returns the error text or None."""
        if self._event_log is None:
            return None
        try:
            self._event_log.record(event, now)
        except (ValueError, OSError) as e:
            self._audit_degraded = True
            return f"{event.kind.value}: {e}"
        return None

    def _safe_persist(self) -> Optional[str]:
        """Persist the ledger state. Returns a warning string or None."""
        if self._state_store is None:
            return None
        try:
            self._state_store.save(self._ledger.state)
        except OSError as e:
            self._persistence_degraded = True
            return f"Persistence degraded: {e}; state committed in memory but StateStore is stale"
        return None
