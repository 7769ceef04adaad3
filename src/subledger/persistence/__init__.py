"""Hash-chained ledger event log and ledger state snapshots."""

from subledger.persistence.event_log import (
    CustodyTotals,
    EventKind,
    EventLog,
    EventRecord,
    LedgerEvent,
)
from subledger.persistence.state_store import StateStore

__all__ = [
    "CustodyTotals",
    "EventKind",
    "EventLog",
    "EventRecord",
    "LedgerEvent",
    "StateStore",
]
