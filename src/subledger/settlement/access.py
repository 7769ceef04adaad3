"""Access control — who may run privileged ledger operations.

Only provider activation/deactivation is privileged today.
"""

from __future__ import annotations

from typing import Iterable, Optional, Protocol, Set, runtime_checkable


@runtime_checkable
class AccessControl(Protocol):
    def is_administrator(self, caller: str) -> bool:
        ...


class StaticAccessControl:
    """A fixed, editable set of administrator identities."""

    def __init__(self, administrators: Optional[Iterable[str]] = None) -> None:
        self._administrators: Set[str] = set(administrators or ())

    def is_administrator(self, caller: str) -> bool:
        return caller in self._administrators

    def grant(self, caller: str) -> None:
        self._administrators.add(caller)

    def revoke(self, caller: str) -> None:
        if caller not in self._administrators:
            raise ValueError(f"Not an administrator: {caller}")
        self._administrators.discard(caller)

    @property
    def administrators(self) -> Set[str]:
        return set(self._administrators)
