"""The provider and subscriber tables.

Both tables are sparse dicts keyed by integer id. Deleted providers stay
in the table as tombstones (provider_id == 0). The id counters live here
too, so that they roll back together with the tables they index.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict

from subledger.errors import ProviderNotFound
from subledger.models.ledger import Provider, Subscriber


@dataclass
class LedgerState:
    providers: Dict[int, Provider] = field(default_factory=dict)
    subscribers: Dict[int, Subscriber] = field(default_factory=dict)
    provider_keys: Dict[str, int] = field(default_factory=dict)
    provider_counter: int = 0
    subscriber_counter: int = 0

    def snapshot(self) -> LedgerState:
        """Deep copy for transaction rollback."""
        return copy.deepcopy(self)

    def restore(self, snapshot: LedgerState) -> None:
        """Restore from a snapshot in place.

        Mutates this object rather than replacing it, so every component
        holding a reference to the state sees the restored tables.
        """
        self.providers = snapshot.providers
        self.subscribers = snapshot.subscribers
        self.provider_keys = snapshot.provider_keys
        self.provider_counter = snapshot.provider_counter
        self.subscriber_counter = snapshot.subscriber_counter

    def live_provider(self, provider_id: int) -> Provider:
        """Look up a provider, treating missing and tombstoned ids alike."""
        record = self.providers.get(provider_id)
        if record is None or record.is_absent:
            raise ProviderNotFound(provider_id)
        return record

    def total_escrow(self) -> Decimal:
        return sum(
            (s.balance for s in self.subscribers.values() if s.is_registered),
            Decimal("0"),
        )

    def total_earned(self) -> Decimal:
        return sum(
            (p.balance for p in self.providers.values() if not p.is_absent),
            Decimal("0"),
        )
