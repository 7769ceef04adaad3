"""Link table — pause and resume of provider/subscriber links.

Links are stored on the provider side, in the order subscribers joined.
Lookup is a linear scan and the first matching link wins.

Which link a pause/resume request refers to is decided by a LinkMatcher:

- OwnerLinkMatcher (default) picks the first link, in list order, whose
  subscriber record is owned by the caller. The subscriber_id argument
  is not consulted, so a caller owning several subscriber records acts
  on whichever of them joined the provider first.
- ExactLinkMatcher picks the link of exactly subscriber_id, and only if
  the caller owns that subscriber record.

Resuming only clears the paused flag. The stored due time is kept, so a
link resumed after its due time is settled by the next billing pass.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from subledger.errors import SubscriberNotFound
from subledger.ledger.state import LedgerState
from subledger.ledger.subscribers import SubscriberRegistry
from subledger.models.ledger import Provider, SubscriptionLink


@runtime_checkable
class LinkMatcher(Protocol):
    """Policy that resolves a pause/resume request to a single link."""

    def match(
        self,
        provider: Provider,
        subscriber_id: int,
        caller: str,
        subscribers: SubscriberRegistry,
    ) -> Optional[SubscriptionLink]:
        """Return the link the caller may act on, or None."""
        ...


class OwnerLinkMatcher:
    """First link whose subscriber is owned by the caller."""

    def match(
        self,
        provider: Provider,
        subscriber_id: int,
        caller: str,
        subscribers: SubscriberRegistry,
    ) -> Optional[SubscriptionLink]:
        for link in provider.links:
            if subscribers.owner_of(link.subscriber_id) == caller:
                return link
        return None


class ExactLinkMatcher:
    """The link of exactly subscriber_id, if owned by the caller."""

    def match(
        self,
        provider: Provider,
        subscriber_id: int,
        caller: str,
        subscribers: SubscriberRegistry,
    ) -> Optional[SubscriptionLink]:
        link = provider.find_link(subscriber_id)
        if link is None or subscribers.owner_of(subscriber_id) != caller:
            return None
        return link


class LinkTable:
    """Pause/resume operations over the provider-side link lists."""

    def __init__(
        self,
        state: LedgerState,
        subscribers: SubscriberRegistry,
        matcher: Optional[LinkMatcher] = None,
    ) -> None:
        self._state = state
        self._subscribers = subscribers
        self._matcher = matcher or OwnerLinkMatcher()

    @property
    def matcher(self) -> LinkMatcher:
        return self._matcher

    def _resolve(
        self, subscriber_id: int, provider_id: int, caller: str,
    ) -> SubscriptionLink:
        provider = self._state.live_provider(provider_id)
        link = self._matcher.match(provider, subscriber_id, caller, self._subscribers)
        if link is None:
            raise SubscriberNotFound(provider_id, caller)
        return link

    def pause(
        self, subscriber_id: int, provider_id: int, caller: str,
    ) -> SubscriptionLink:
        """Pause a link. Pausing an already paused link is a no-op."""
        link = self._resolve(subscriber_id, provider_id, caller)
        link.paused = True
        return link

    def resume(
        self, subscriber_id: int, provider_id: int, caller: str,
    ) -> SubscriptionLink:
        """Clear a link's paused flag, keeping its stored due time."""
        link = self._resolve(subscriber_id, provider_id, caller)
        link.paused = False
        return link
