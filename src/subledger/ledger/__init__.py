"""Ledger core: the registries, billing engine and transaction scope."""

from subledger.ledger.billing import BillingEngine
from subledger.ledger.core import SubscriptionLedger
from subledger.ledger.ids import IdentifierAllocator
from subledger.ledger.links import (
    ExactLinkMatcher,
    LinkMatcher,
    LinkTable,
    OwnerLinkMatcher,
)
from subledger.ledger.providers import ProviderRegistry
from subledger.ledger.state import LedgerState
from subledger.ledger.subscribers import SubscriberRegistry

__all__ = [
    "BillingEngine",
    "ExactLinkMatcher",
    "IdentifierAllocator",
    "LedgerState",
    "LinkMatcher",
    "LinkTable",
    "OwnerLinkMatcher",
    "ProviderRegistry",
    "SubscriberRegistry",
    "SubscriptionLedger",
]
