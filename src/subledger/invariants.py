"""Invariant checks against the parameter file and a ledger state.

Both checks return a list of violation descriptions; an empty list means
the input is sound. They never raise on a violation.
"""

from __future__ import annotations

import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from subledger.config import DEFAULT_PARAMS_PATH
from subledger.ledger.state import LedgerState
from subledger.models.ledger import BillingCycle

_CYCLE_ORDER = ("DAY", "MONTH", "YEAR")


def check_params(params: dict) -> list[str]:
    """Validate a parsed ledger_params.json mapping."""
    errors: list[str] = []

    max_providers = params.get("MAX_PROVIDERS")
    if max_providers is not None and (
        not isinstance(max_providers, int) or max_providers <= 0
    ):
        errors.append(f"MAX_PROVIDERS must be a positive integer or null, got {max_providers}")

    lock_days = params.get("WITHDRAWAL_LOCK_DAYS", 0)
    if not isinstance(lock_days, int) or lock_days < 1:
        errors.append(f"WITHDRAWAL_LOCK_DAYS must be >= 1, got {lock_days}")

    cycles = params.get("BILLING_CYCLE_DAYS", {})
    for name in _CYCLE_ORDER:
        if name not in cycles:
            errors.append(f"BILLING_CYCLE_DAYS missing cycle: {name}")
    unknown = set(cycles) - set(_CYCLE_ORDER)
    if unknown:
        errors.append(f"BILLING_CYCLE_DAYS has unknown cycles: {sorted(unknown)}")
    days = [cycles[n] for n in _CYCLE_ORDER if n in cycles]
    if any(d <= 0 for d in days):
        errors.append("BILLING_CYCLE_DAYS values must be positive")
    if days != sorted(set(days)):
        errors.append("BILLING_CYCLE_DAYS must strictly increase DAY < MONTH < YEAR")

    default_cycle = params.get("DEFAULT_BILLING_CYCLE")
    if default_cycle not in BillingCycle.__members__:
        errors.append(f"DEFAULT_BILLING_CYCLE must be one of {_CYCLE_ORDER}, got {default_cycle}")

    for name in ("MINIMUM_FEE_USD", "MINIMUM_DEPOSIT_USD"):
        try:
            value = Decimal(str(params.get(name)))
        except InvalidOperation:
            errors.append(f"{name} must be a decimal amount")
            continue
        if not value > Decimal("0"):
            errors.append(f"{name} must be positive, got {value}")

    if (params.get("PRICE_STALENESS_SECONDS") or 0) <= 0:
        errors.append("PRICE_STALENESS_SECONDS must be positive")
    decimals = params.get("SETTLEMENT_TOKEN_DECIMALS")
    if not isinstance(decimals, int) or not 0 <= decimals <= 36:
        errors.append(f"SETTLEMENT_TOKEN_DECIMALS must be in [0, 36], got {decimals}")

    return errors


def check_state(state: LedgerState) -> list[str]:
    """Validate the structural invariants of a ledger state."""
    errors: list[str] = []

    for slot, provider in state.providers.items():
        if provider.is_absent:
            if provider.balance != Decimal("0"):
                errors.append(f"Removed provider in slot {slot} holds a balance")
            continue
        pid = provider.provider_id
        if pid != slot:
            errors.append(f"Provider {pid} stored under slot {slot}")
        if pid > state.provider_counter:
            errors.append(f"Provider {pid} exceeds the id counter {state.provider_counter}")
        if provider.balance < Decimal("0"):
            errors.append(f"Provider {pid} has a negative balance")
        if state.provider_keys.get(provider.key_hash) != pid:
            errors.append(f"Provider {pid} key hash is not indexed")
        seen: set[int] = set()
        for link in provider.links:
            if link.subscriber_id in seen:
                errors.append(f"Provider {pid} links subscriber {link.subscriber_id} twice")
            seen.add(link.subscriber_id)
            subscriber = state.subscribers.get(link.subscriber_id)
            if subscriber is None or not subscriber.is_registered:
                errors.append(
                    f"Provider {pid} links unregistered subscriber {link.subscriber_id}"
                )
            elif pid not in subscriber.provider_ids:
                errors.append(
                    f"Subscriber {link.subscriber_id} does not list provider {pid}"
                )

    for digest, pid in state.provider_keys.items():
        provider = state.providers.get(pid)
        if provider is None or provider.is_absent or provider.key_hash != digest:
            errors.append(f"Key index entry points at missing provider {pid}")

    for sid, subscriber in state.subscribers.items():
        if not subscriber.is_registered:
            continue
        if sid > state.subscriber_counter:
            errors.append(f"Subscriber {sid} exceeds the id counter {state.subscriber_counter}")
        if subscriber.balance < Decimal("0"):
            errors.append(f"Subscriber {sid} has a negative balance")

    return errors


def check(params_path: Optional[Path] = None, state: Optional[LedgerState] = None) -> int:
    """Run all checks, print the outcome, return a process exit code."""
    path = params_path or DEFAULT_PARAMS_PATH
    errors = check_params(json.loads(path.read_text(encoding="utf-8")))
    if state is not None:
        errors.extend(check_state(state))
    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"  - {err}")
        return 1
    print("Invariant check passed.")
    return 0
