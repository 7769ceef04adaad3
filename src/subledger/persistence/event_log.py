"""Ledger event log — a hash-chained journal of every committed change.

The service builds one LedgerEvent per thing that happened (a provider
registered, a link charged, earnings paid out) through the constructors
below, so each kind always carries the same payload fields. The log turns
events into EventRecords, numbers them, and chains them: every record
hashes its own content together with the hash of the record before it.
Editing, dropping or reordering a stored line breaks the chain, and
loading the file fails closed.

Besides the audit trail, the log answers two ledger questions:
- history: every event touching one provider or one subscriber.
- custody: tokens pulled in minus tokens pushed out, which must equal the
  ledger's total escrow plus total earnings.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, Sequence

from subledger.errors import TransferUnconfirmed
from subledger.models.ledger import BillingCycle, SettlementReport

FIRST_PREVIOUS_HASH = "sha256:" + "0" * 64


class EventKind(str, enum.Enum):
    """Classification of ledger events."""
    # Provider lifecycle
    PROVIDER_REGISTERED = "provider_registered"
    PROVIDER_REMOVED = "provider_removed"
    PROVIDER_FEE_UPDATED = "provider_fee_updated"
    PROVIDER_STATUS_CHANGED = "provider_status_changed"
    # Subscriber lifecycle
    SUBSCRIBER_REGISTERED = "subscriber_registered"
    SUBSCRIBER_DEPOSIT = "subscriber_deposit"
    # Links and billing
    SUBSCRIPTION_LINKED = "subscription_linked"
    SUBSCRIPTION_CHARGED = "subscription_charged"
    SUBSCRIPTION_PAUSED = "subscription_paused"
    SUBSCRIPTION_RESUMED = "subscription_resumed"
    PAYMENTS_PROCESSED = "payments_processed"
    EARNINGS_WITHDRAWN = "earnings_withdrawn"
    # Custody
    TRANSFER_UNCONFIRMED = "transfer_unconfirmed"


# Payload field carrying the token amount each custody event moved
_PULLED = {
    EventKind.SUBSCRIBER_REGISTERED: "deposit",
    EventKind.SUBSCRIBER_DEPOSIT: "amount",
}
_PUSHED = {
    EventKind.PROVIDER_REMOVED: "refund",
    EventKind.EARNINGS_WITHDRAWN: "amount",
}


@dataclass(frozen=True)
class LedgerEvent:
    """An event before it is numbered, timestamped and chained.

    Build these with the constructors, not directly.
    """
    kind: EventKind
    actor: str
    payload: dict[str, Any]

    @classmethod
    def provider_registered(
        cls, owner: str, provider_id: int, fee: Decimal, cycle: BillingCycle,
    ) -> LedgerEvent:
        return cls(EventKind.PROVIDER_REGISTERED, owner, {
            "provider_id": provider_id,
            "fee_per_cycle": str(fee),
            "billing_cycle": cycle.value,
        })

    @classmethod
    def provider_removed(
        cls, caller: str, provider_id: int, refund: Decimal,
    ) -> LedgerEvent:
        return cls(EventKind.PROVIDER_REMOVED, caller, {
            "provider_id": provider_id, "refund": str(refund),
        })

    @classmethod
    def fee_updated(
        cls, caller: str, provider_id: int, fee: Decimal, cycle: BillingCycle,
    ) -> LedgerEvent:
        return cls(EventKind.PROVIDER_FEE_UPDATED, caller, {
            "provider_id": provider_id,
            "fee_per_cycle": str(fee),
            "billing_cycle": cycle.value,
        })

    @classmethod
    def status_changed(
        cls, caller: str, provider_id: int, is_active: bool,
    ) -> LedgerEvent:
        return cls(EventKind.PROVIDER_STATUS_CHANGED, caller, {
            "provider_id": provider_id, "is_active": is_active,
        })

    @classmethod
    def subscriber_registered(
        cls,
        owner: str,
        subscriber_id: int,
        deposit: Decimal,
        provider_ids: Sequence[int],
    ) -> LedgerEvent:
        return cls(EventKind.SUBSCRIBER_REGISTERED, owner, {
            "subscriber_id": subscriber_id,
            "deposit": str(deposit),
            "provider_ids": list(provider_ids),
        })

    @classmethod
    def deposited(
        cls, caller: str, subscriber_id: int, amount: Decimal,
    ) -> LedgerEvent:
        return cls(EventKind.SUBSCRIBER_DEPOSIT, caller, {
            "subscriber_id": subscriber_id, "amount": str(amount),
        })

    @classmethod
    def linked(
        cls, actor: str, subscriber_id: int, provider_id: int, charged: Decimal,
    ) -> LedgerEvent:
        return cls(EventKind.SUBSCRIPTION_LINKED, actor, {
            "provider_id": provider_id,
            "subscriber_id": subscriber_id,
            "charged": str(charged),
        })

    @classmethod
    def link_toggled(
        cls, actor: str, subscriber_id: int, provider_id: int, paused: bool,
    ) -> LedgerEvent:
        kind = (
            EventKind.SUBSCRIPTION_PAUSED if paused
            else EventKind.SUBSCRIPTION_RESUMED
        )
        return cls(kind, actor, {
            "provider_id": provider_id, "subscriber_id": subscriber_id,
        })

    @classmethod
    def settlement(
        cls, actor: str, report: SettlementReport,
    ) -> list[LedgerEvent]:
        """One event per charge and per pause, then a pass summary.

        A pass that changed nothing produces no events.
        """
        events = [
            cls(EventKind.SUBSCRIPTION_CHARGED, actor, {
                "provider_id": report.provider_id,
                "subscriber_id": subscriber_id,
                "amount": str(report.fee_per_cycle),
            })
            for subscriber_id in report.charged
        ]
        events.extend(
            cls(EventKind.SUBSCRIPTION_PAUSED, actor, {
                "provider_id": report.provider_id,
                "subscriber_id": subscriber_id,
                "reason": "insufficient_balance",
            })
            for subscriber_id in report.paused
        )
        if report.changed:
            events.append(cls(EventKind.PAYMENTS_PROCESSED, actor, {
                "provider_id": report.provider_id,
                "collected": str(report.collected),
                "balance": str(report.balance),
            }))
        return events

    @classmethod
    def earnings_withdrawn(
        cls, caller: str, provider_id: int, amount: Decimal, remaining: Decimal,
    ) -> LedgerEvent:
        return cls(EventKind.EARNINGS_WITHDRAWN, caller, {
            "provider_id": provider_id,
            "amount": str(amount),
            "remaining": str(remaining),
        })

    @classmethod
    def transfer_unconfirmed(cls, error: TransferUnconfirmed) -> LedgerEvent:
        return cls(EventKind.TRANSFER_UNCONFIRMED, error.party, {
            "amount": str(error.amount),
            "tx_hash": error.tx_hash,
            "reason": error.reason,
        })


def _digest(fields: dict[str, Any]) -> str:
    canonical = json.dumps(fields, sort_keys=True, ensure_ascii=False)
    return f"sha256:{hashlib.sha256(canonical.encode('utf-8')).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A numbered, timestamped, chained LedgerEvent as stored in the log."""
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    previous_hash: str
    event_hash: str

    def hashed_fields(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "previous_hash": self.previous_hash,
        }

    def to_json(self) -> str:
        return json.dumps(
            {**self.hashed_fields(), "event_hash": self.event_hash},
            sort_keys=True,
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, line: str) -> EventRecord:
        data = json.loads(line)
        return cls(
            event_id=data["event_id"],
            event_kind=EventKind(data["event_kind"]),
            timestamp_utc=data["timestamp_utc"],
            actor_id=data["actor_id"],
            payload=data["payload"],
            previous_hash=data["previous_hash"],
            event_hash=data["event_hash"],
        )

    def amount(self, field_name: str) -> Decimal:
        return Decimal(self.payload[field_name])

    def touches_provider(self, provider_id: int) -> bool:
        return self.payload.get("provider_id") == provider_id

    def touches_subscriber(self, subscriber_id: int) -> bool:
        return self.payload.get("subscriber_id") == subscriber_id


@dataclass(frozen=True)
class CustodyTotals:
    """Token movements recorded in the log."""
    pulled: Decimal
    pushed: Decimal
    unconfirmed: Decimal

    @property
    def held(self) -> Decimal:
        """What custody should hold: equals escrow plus earnings."""
        return self.pulled - self.pushed


class EventLog:
    """Hash-chained ledger journal with optional JSONL persistence.

    Usage:
        log = EventLog(Path("data/events.jsonl"))
        log.record(LedgerEvent.deposited("0xs", 1, Decimal("50")))
        log.custody_totals().held
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._records: list[EventRecord] = []
        self._storage_path = storage_path

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    @property
    def count(self) -> int:
        return len(self._records)

    @property
    def head_hash(self) -> str:
        """Hash of the newest record, or FIRST_PREVIOUS_HASH for an empty log."""
        return self._records[-1].event_hash if self._records else FIRST_PREVIOUS_HASH

    def record(
        self, event: LedgerEvent, timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Number, chain and store one event.

        The file is written first. If that raises OSError the record is
        not kept and the next one reuses its number.
        """
        ts = (timestamp_utc or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ")
        fields = {
            "event_id": f"EVT-{self.count + 1:08d}",
            "event_kind": event.kind.value,
            "timestamp_utc": ts,
            "actor_id": event.actor,
            "payload": event.payload,
            "previous_hash": self.head_hash,
        }
        stored = EventRecord(
            event_id=fields["event_id"],
            event_kind=event.kind,
            timestamp_utc=ts,
            actor_id=event.actor,
            payload=event.payload,
            previous_hash=fields["previous_hash"],
            event_hash=_digest(fields),
        )
        if self._storage_path:
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(stored.to_json() + "\n")
        self._records.append(stored)
        return stored

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return records, optionally filtered by kind."""
        if kind is None:
            return list(self._records)
        return [r for r in self._records if r.event_kind == kind]

    def provider_history(self, provider_id: int) -> list[EventRecord]:
        return [r for r in self._records if r.touches_provider(provider_id)]

    def subscriber_history(self, subscriber_id: int) -> list[EventRecord]:
        return [r for r in self._records if r.touches_subscriber(subscriber_id)]

    def custody_totals(self) -> CustodyTotals:
        pulled = pushed = unconfirmed = Decimal("0")
        for r in self._records:
            if r.event_kind in _PULLED:
                pulled += r.amount(_PULLED[r.event_kind])
            elif r.event_kind in _PUSHED:
                pushed += r.amount(_PUSHED[r.event_kind])
            elif r.event_kind == EventKind.TRANSFER_UNCONFIRMED:
                unconfirmed += r.amount("amount")
        return CustodyTotals(pulled, pushed, unconfirmed)

    def _load_from_file(self, path: Path) -> None:
        """Load and verify every record. Fail-closed on any mismatch."""
        seen: set[str] = set()
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                stored = EventRecord.from_json(line)
                if stored.event_id in seen:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): "
                        f"{stored.event_id}"
                    )
                if stored.previous_hash != self.head_hash:
                    raise ValueError(
                        f"Chain broken (line {line_num}): event {stored.event_id} "
                        f"follows {stored.previous_hash}, expected {self.head_hash}"
                    )
                computed = _digest(stored.hashed_fields())
                if stored.event_hash != computed:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event "
                        f"{stored.event_id} stored hash {stored.event_hash} "
                        f"!= computed {computed}"
                    )
                seen.add(stored.event_id)
                self._records.append(stored)
