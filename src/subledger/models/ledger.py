"""Ledger models — providers, subscribers, and the links between them.

All monetary values use Decimal for exact arithmetic. No floats in finance.

Records live in sparse tables keyed by integer id. Deletion is logical:
a Provider whose provider_id is 0 and a Subscriber whose owner is None
are treated as absent, whatever their other fields hold.

Invariants enforced around these models:
- At most one link per (provider, subscriber) pair
- A link's next_billing_utc only moves forward, one cycle per charge
- Every debit from a subscriber is matched by an equal provider credit
"""

from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

ABSENT_ID = 0


class BillingCycle(str, enum.Enum):
    """Interval between successive charges for a provider."""
    DAY = "day"
    MONTH = "month"
    YEAR = "year"


# Fixed duration of each billing cycle
CYCLE_DURATIONS: Dict[BillingCycle, timedelta] = {
    BillingCycle.DAY: timedelta(days=1),
    BillingCycle.MONTH: timedelta(days=30),
    BillingCycle.YEAR: timedelta(days=365),
}


def key_hash(key: str, owner: str) -> str:
    """Bind an opaque provider key to its registrant.

    The same key registered by two different owners yields two
    different hashes; the same (key, owner) pair always collides.
    """
    canonical = f"{owner}\x00{key}".encode("utf-8")
    return "sha256:" + hashlib.sha256(canonical).hexdigest()


@dataclass
class SubscriptionLink:
    """Provider-side view of one subscriber's billing relationship.

    next_billing_utc is only meaningful while the link is not paused.
    """
    subscriber_id: int
    next_billing_utc: datetime
    paused: bool = False

    def is_due(self, now: datetime) -> bool:
        return not self.paused and now >= self.next_billing_utc


@dataclass
class Provider:
    """A provider offering a recurring paid service.

    Mutable: fee, cycle, active flag, balance and links change over
    the provider's lifetime.
    """
    provider_id: int
    owner: str
    key_hash: str
    fee_per_cycle: Decimal
    next_withdrawal_utc: datetime
    balance: Decimal = Decimal("0")
    billing_cycle: BillingCycle = BillingCycle.MONTH
    is_active: bool = True
    links: List[SubscriptionLink] = field(default_factory=list)

    @property
    def is_absent(self) -> bool:
        return self.provider_id == ABSENT_ID

    def find_link(self, subscriber_id: int) -> Optional[SubscriptionLink]:
        """Linear scan for a subscriber's link. First match wins."""
        for link in self.links:
            if link.subscriber_id == subscriber_id:
                return link
        return None

    def tombstone(self) -> None:
        """Logically delete this record in place."""
        self.provider_id = ABSENT_ID
        self.balance = Decimal("0")
        self.is_active = False


@dataclass
class Subscriber:
    """A subscriber paying one or more providers out of escrow."""
    subscriber_id: int
    owner: Optional[str]
    balance: Decimal = Decimal("0")
    provider_ids: List[int] = field(default_factory=list)

    @property
    def is_registered(self) -> bool:
        return self.owner is not None


@dataclass(frozen=True)
class ProviderInfo:
    """Read-only provider summary."""
    owner: str
    fee_per_cycle: Decimal
    balance: Decimal
    link_count: int
    is_active: bool

    def as_tuple(self) -> tuple:
        return (
            self.owner,
            self.fee_per_cycle,
            self.balance,
            self.link_count,
            self.is_active,
        )


@dataclass(frozen=True)
class SubscriberInfo:
    """Read-only subscriber summary."""
    owner: str
    balance: Decimal
    provider_ids: tuple


@dataclass(frozen=True)
class SettlementReport:
    """Outcome of one settlement pass over a provider's link list.

    Invariant: collected == fee_per_cycle * len(charged)
    """
    provider_id: int
    fee_per_cycle: Decimal
    charged: tuple
    paused: tuple
    collected: Decimal
    balance: Decimal

    @property
    def changed(self) -> bool:
        return bool(self.charged or self.paused)
