"""State store — JSON snapshot of the ledger tables.

Decimals are stored as strings and datetimes as ISO-8601 so that a
save/load cycle reproduces balances and due times exactly. Tombstoned
providers are stored like any other record; they keep their slot in the
table and keep the id counter from reissuing their id.

Writes go to a temporary file first and are moved into place, so a crash
mid-write leaves the previous snapshot intact.
"""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from subledger.ledger.state import LedgerState
from subledger.models.ledger import (
    BillingCycle,
    Provider,
    Subscriber,
    SubscriptionLink,
)

FORMAT_VERSION = 1


def _provider_to_dict(p: Provider) -> dict[str, Any]:
    return {
        "provider_id": p.provider_id,
        "owner": p.owner,
        "key_hash": p.key_hash,
        "fee_per_cycle": str(p.fee_per_cycle),
        "balance": str(p.balance),
        "billing_cycle": p.billing_cycle.value,
        "is_active": p.is_active,
        "next_withdrawal_utc": p.next_withdrawal_utc.isoformat(),
        "links": [
            {
                "subscriber_id": link.subscriber_id,
                "paused": link.paused,
                "next_billing_utc": link.next_billing_utc.isoformat(),
            }
            for link in p.links
        ],
    }


def _provider_from_dict(data: dict[str, Any]) -> Provider:
    return Provider(
        provider_id=data["provider_id"],
        owner=data["owner"],
        key_hash=data["key_hash"],
        fee_per_cycle=Decimal(data["fee_per_cycle"]),
        balance=Decimal(data["balance"]),
        billing_cycle=BillingCycle(data["billing_cycle"]),
        is_active=data["is_active"],
        next_withdrawal_utc=datetime.fromisoformat(data["next_withdrawal_utc"]),
        links=[
            SubscriptionLink(
                subscriber_id=link["subscriber_id"],
                paused=link["paused"],
                next_billing_utc=datetime.fromisoformat(link["next_billing_utc"]),
            )
            for link in data["links"]
        ],
    )


def _subscriber_to_dict(s: Subscriber) -> dict[str, Any]:
    return {
        "subscriber_id": s.subscriber_id,
        "owner": s.owner,
        "balance": str(s.balance),
        "provider_ids": list(s.provider_ids),
    }


def _subscriber_from_dict(data: dict[str, Any]) -> Subscriber:
    return Subscriber(
        subscriber_id=data["subscriber_id"],
        owner=data["owner"],
        balance=Decimal(data["balance"]),
        provider_ids=list(data["provider_ids"]),
    )


def state_to_dict(state: LedgerState) -> dict[str, Any]:
    return {
        "version": FORMAT_VERSION,
        "provider_counter": state.provider_counter,
        "subscriber_counter": state.subscriber_counter,
        "provider_keys": dict(state.provider_keys),
        "providers": [_provider_to_dict(p) for _, p in sorted(state.providers.items())],
        "provider_slots": sorted(state.providers),
        "subscribers": [_subscriber_to_dict(s) for _, s in sorted(state.subscribers.items())],
    }


def state_from_dict(data: dict[str, Any]) -> LedgerState:
    version = data.get("version")
    if version != FORMAT_VERSION:
        raise ValueError(f"Unsupported state format version: {version}")
    providers = {
        slot: _provider_from_dict(p)
        for slot, p in zip(data["provider_slots"], data["providers"])
    }
    subscribers = {
        s["subscriber_id"]: _subscriber_from_dict(s) for s in data["subscribers"]
    }
    return LedgerState(
        providers=providers,
        subscribers=subscribers,
        provider_keys=dict(data["provider_keys"]),
        provider_counter=data["provider_counter"],
        subscriber_counter=data["subscriber_counter"],
    )


class StateStore:
    """Persists the ledger state to a single JSON file."""

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    def exists(self) -> bool:
        return self._storage_path.exists()

    def save(self, state: LedgerState) -> None:
        """Write the state atomically. Raises OSError on failure."""
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        tmp.write_text(
            json.dumps(state_to_dict(state), indent=2, sort_keys=True),
            encoding="utf-8",
        )
        tmp.replace(self._storage_path)

    def load(self) -> LedgerState:
        """Load the stored state, or a fresh one if nothing is stored."""
        if not self._storage_path.exists():
            return LedgerState()
        return state_from_dict(
            json.loads(self._storage_path.read_text(encoding="utf-8"))
        )
