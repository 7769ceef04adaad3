"""Ledger failure conditions.

Every failure is a distinct, named condition carrying the data needed to
explain it. Any of these aborts the triggering operation and leaves the
ledger unchanged, except TransferUnconfirmed, which reports a broadcast
transaction whose outcome is unknown. None are retried.

All conditions derive from LedgerError, which is a ValueError so that
callers treating domain failures as ValueError keep working.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional


class LedgerError(ValueError):
    """Base class for all named ledger failures."""

    code = "ledger_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"code": self.code, "message": str(self)}
        data.update({k: _plain(v) for k, v in self.details.items()})
        return data


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class CapacityExceeded(LedgerError):
    code = "capacity_exceeded"

    def __init__(self, limit: int) -> None:
        super().__init__(f"Provider capacity of {limit} reached", limit=limit)
        self.limit = limit


class FeeTooLow(LedgerError):
    code = "fee_too_low"

    def __init__(self, fee: Decimal, minimum: Decimal) -> None:
        super().__init__(
            f"Fee {fee} is below the minimum of {minimum}",
            fee=fee, minimum=minimum,
        )
        self.fee = fee
        self.minimum = minimum


class DuplicateKey(LedgerError):
    code = "duplicate_key"

    def __init__(self, owner: str, provider_id: int) -> None:
        super().__init__(
            f"Key already registered by {owner} as provider {provider_id}",
            owner=owner, provider_id=provider_id,
        )
        self.owner = owner
        self.provider_id = provider_id


class ProviderNotFound(LedgerError):
    code = "provider_not_found"

    def __init__(self, provider_id: int) -> None:
        super().__init__(
            f"Provider not found: {provider_id}", provider_id=provider_id,
        )
        self.provider_id = provider_id


class NotOwner(LedgerError):
    code = "not_owner"

    def __init__(self, caller: str, owner: Optional[str]) -> None:
        super().__init__(
            f"Caller {caller} is not the owner", caller=caller, owner=owner,
        )
        self.caller = caller
        self.owner = owner


class StateUnchanged(LedgerError):
    code = "state_unchanged"

    def __init__(self, provider_id: int, state: bool) -> None:
        super().__init__(
            f"Provider {provider_id} is already "
            f"{'active' if state else 'inactive'}",
            provider_id=provider_id, state=state,
        )
        self.provider_id = provider_id
        self.state = state


class ProviderInactive(LedgerError):
    code = "provider_inactive"

    def __init__(self, provider_id: int) -> None:
        super().__init__(
            f"Provider {provider_id} is not active", provider_id=provider_id,
        )
        self.provider_id = provider_id


class AlreadyLinked(LedgerError):
    code = "already_linked"

    def __init__(self, provider_id: int, subscriber_id: int) -> None:
        super().__init__(
            f"Subscriber {subscriber_id} is already linked to "
            f"provider {provider_id}",
            provider_id=provider_id, subscriber_id=subscriber_id,
        )
        self.provider_id = provider_id
        self.subscriber_id = subscriber_id


class InsufficientBalance(LedgerError):
    code = "insufficient_balance"

    def __init__(self, required: Decimal, available: Decimal) -> None:
        super().__init__(
            f"Insufficient balance: required {required}, available {available}",
            required=required, available=available,
        )
        self.required = required
        self.available = available


class WithdrawalLocked(LedgerError):
    code = "withdrawal_locked"

    def __init__(self, available_utc: datetime) -> None:
        super().__init__(
            f"Withdrawal locked until {available_utc.isoformat()}",
            available_utc=available_utc,
        )
        self.available_utc = available_utc


class NoProvidersSpecified(LedgerError):
    code = "no_providers_specified"

    def __init__(self) -> None:
        super().__init__("At least one provider must be specified")


class DepositTooLow(LedgerError):
    code = "deposit_too_low"

    def __init__(self, deposit: Decimal, minimum: Decimal) -> None:
        super().__init__(
            f"Deposit {deposit} is below the minimum of {minimum}",
            deposit=deposit, minimum=minimum,
        )
        self.deposit = deposit
        self.minimum = minimum


class SubscriberNotRegistered(LedgerError):
    code = "subscriber_not_registered"

    def __init__(self, subscriber_id: int) -> None:
        super().__init__(
            f"Subscriber not registered: {subscriber_id}",
            subscriber_id=subscriber_id,
        )
        self.subscriber_id = subscriber_id


class SubscriberNotFound(LedgerError):
    code = "subscriber_not_found"

    def __init__(self, provider_id: int, caller: str) -> None:
        super().__init__(
            f"No subscription of {caller} found on provider {provider_id}",
            provider_id=provider_id, caller=caller,
        )
        self.provider_id = provider_id
        self.caller = caller


class PriceUnavailable(LedgerError):
    code = "price_unavailable"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Price unavailable: {reason}", reason=reason)
        self.reason = reason


class NotAdministrator(LedgerError):
    code = "not_administrator"

    def __init__(self, caller: str) -> None:
        super().__init__(
            f"Caller {caller} is not an administrator", caller=caller,
        )
        self.caller = caller


class TransferFailed(LedgerError):
    code = "transfer_failed"

    def __init__(self, party: str, amount: Decimal, reason: str) -> None:
        super().__init__(
            f"Transfer of {amount} for {party} failed: {reason}",
            party=party, amount=amount, reason=reason,
        )
        self.party = party
        self.amount = amount
        self.reason = reason


class InvalidAmount(LedgerError):
    code = "invalid_amount"

    def __init__(self, amount: Decimal) -> None:
        super().__init__(f"Amount must be positive, got {amount}", amount=amount)
        self.amount = amount


class TransferUnconfirmed(LedgerError):
    """A transaction was broadcast but its outcome is unknown.

    Unlike TransferFailed the tokens may already have moved, so the ledger
    change it settles is kept rather than reverted.
    """

    code = "transfer_unconfirmed"

    def __init__(
        self, party: str, amount: Decimal, tx_hash: str, reason: str,
    ) -> None:
        super().__init__(
            f"Transfer of {amount} for {party} unconfirmed "
            f"(transaction {tx_hash}): {reason}",
            party=party, amount=amount, tx_hash=tx_hash, reason=reason,
        )
        self.party = party
        self.amount = amount
        self.tx_hash = tx_hash
        self.reason = reason
