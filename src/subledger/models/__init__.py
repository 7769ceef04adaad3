"""Core data models for the subscription ledger."""

from subledger.models.ledger import (
    ABSENT_ID,
    CYCLE_DURATIONS,
    BillingCycle,
    Provider,
    ProviderInfo,
    SettlementReport,
    Subscriber,
    SubscriberInfo,
    SubscriptionLink,
    key_hash,
)

__all__ = [
    "ABSENT_ID",
    "CYCLE_DURATIONS",
    "BillingCycle",
    "Provider",
    "ProviderInfo",
    "SettlementReport",
    "Subscriber",
    "SubscriberInfo",
    "SubscriptionLink",
    "key_hash",
]
