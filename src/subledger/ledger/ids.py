"""Identifier allocation for providers and subscribers.

Ids start at 1; 0 is reserved to mean "absent". Each allocator persists
its counter in the shared LedgerState, so an id handed out inside a
transaction that later fails is returned to the pool with the rollback.
Ids of committed records are never reused.
"""

from __future__ import annotations

from subledger.ledger.state import LedgerState


class IdentifierAllocator:
    """Monotonic id counter stored on a LedgerState attribute.

    Usage:
        providers = IdentifierAllocator(state, "provider_counter")
        providers.next_id()   # 1
        providers.next_id()   # 2
    """

    def __init__(self, state: LedgerState, counter_attr: str) -> None:
        if not hasattr(state, counter_attr):
            raise ValueError(f"Unknown counter: {counter_attr}")
        self._state = state
        self._counter_attr = counter_attr

    @property
    def current(self) -> int:
        """The last id issued (0 if none)."""
        return getattr(self._state, self._counter_attr)

    def peek(self) -> int:
        """The id the next call to next_id() will return."""
        return self.current + 1

    def next_id(self) -> int:
        issued = self.peek()
        setattr(self._state, self._counter_attr, issued)
        return issued
