"""Tests for pause/resume — proves both link matching policies."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from subledger.config import LedgerConfig
from subledger.errors import ProviderNotFound, SubscriberNotFound
from subledger.ledger.core import SubscriptionLedger
from subledger.ledger.links import (
    ExactLinkMatcher,
    LinkMatcher,
    LinkTable,
    OwnerLinkMatcher,
)
from subledger.ledger.state import LedgerState
from subledger.ledger.subscribers import SubscriberRegistry

MIN = Decimal("1")
CYCLE = timedelta(days=30)


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


def _two_subscriptions(matcher=None) -> tuple:
    """One owner holding two subscriber records on the same provider."""
    ledger = SubscriptionLedger(LedgerConfig(), matcher=matcher)
    pid = ledger.register_provider("0xp", "news", Decimal("100"), MIN, _now())
    first = ledger.register_subscriber("0xs", Decimal("500"), [pid], MIN, _now())
    second = ledger.register_subscriber("0xs", Decimal("500"), [pid], MIN, _now())
    return ledger, pid, first, second


def _paused(ledger: SubscriptionLedger, pid: int) -> dict:
    return {link.subscriber_id: link.paused for link in ledger.get_provider_links(pid)}


class TestMatchers:
    def test_default_matcher_is_owner_based(self) -> None:
        table = LinkTable(LedgerState(), SubscriberRegistry(LedgerState()))
        assert isinstance(table.matcher, OwnerLinkMatcher)

    def test_matchers_satisfy_protocol(self) -> None:
        assert isinstance(OwnerLinkMatcher(), LinkMatcher)
        assert isinstance(ExactLinkMatcher(), LinkMatcher)


class TestOwnerMatching:
    def test_pauses_first_link_owned_by_caller(self) -> None:
        ledger, pid, first, second = _two_subscriptions()
        link = ledger.pause(second, pid, "0xs")
        assert link.subscriber_id == first
        assert _paused(ledger, pid) == {first: True, second: False}

    def test_subscriber_id_not_consulted(self) -> None:
        ledger, pid, first, _ = _two_subscriptions()
        link = ledger.pause(12345, pid, "0xs")
        assert link.subscriber_id == first

    def test_caller_without_link_rejected(self) -> None:
        ledger, pid, first, _ = _two_subscriptions()
        with pytest.raises(SubscriberNotFound) as exc:
            ledger.pause(first, pid, "0xother")
        assert exc.value.caller == "0xother"
        assert _paused(ledger, pid) == {first: False, 2: False}


class TestExactMatching:
    def test_pauses_named_link(self) -> None:
        ledger, pid, first, second = _two_subscriptions(ExactLinkMatcher())
        link = ledger.pause(second, pid, "0xs")
        assert link.subscriber_id == second
        assert _paused(ledger, pid) == {first: False, second: True}

    def test_requires_ownership(self) -> None:
        ledger, pid, first, _ = _two_subscriptions(ExactLinkMatcher())
        ledger.register_subscriber("0xt", Decimal("500"), [pid], MIN, _now())
        with pytest.raises(SubscriberNotFound):
            ledger.pause(3, pid, "0xs")

    def test_requires_link(self) -> None:
        ledger, pid, _, _ = _two_subscriptions(ExactLinkMatcher())
        with pytest.raises(SubscriberNotFound):
            ledger.pause(99, pid, "0xs")


class TestResume:
    def test_pause_twice_is_noop(self) -> None:
        ledger, pid, first, _ = _two_subscriptions()
        ledger.pause(first, pid, "0xs")
        ledger.pause(first, pid, "0xs")
        assert _paused(ledger, pid)[first]

    def test_paused_link_skipped_by_billing(self) -> None:
        ledger, pid, first, second = _two_subscriptions(ExactLinkMatcher())
        ledger.pause(first, pid, "0xs")
        report = ledger.settle(pid, _now() + CYCLE)
        assert report.charged == (second,)
        assert ledger.get_subscriber_info(first).balance == Decimal("400")

    def test_resume_keeps_due_time(self) -> None:
        ledger, pid, first, _ = _two_subscriptions(ExactLinkMatcher())
        ledger.pause(first, pid, "0xs")
        late = _now() + 2 * CYCLE
        ledger.settle(pid, late)
        link = ledger.resume(first, pid, "0xs")
        assert not link.paused
        assert link.next_billing_utc == _now() + CYCLE
        report = ledger.settle(pid, late)
        assert first in report.charged

    def test_resume_after_running_dry(self) -> None:
        ledger = SubscriptionLedger(LedgerConfig())
        pid = ledger.register_provider("0xp", "news", Decimal("100"), MIN, _now())
        sid = ledger.register_subscriber("0xs", Decimal("150"), [pid], MIN, _now())
        due = _now() + CYCLE
        assert ledger.settle(pid, due).paused == (sid,)
        ledger.deposit(sid, Decimal("100"), "0xs")
        ledger.resume(sid, pid, "0xs")
        assert ledger.settle(pid, due).charged == (sid,)
        assert ledger.get_subscriber_info(sid).balance == Decimal("50")

    def test_unknown_provider(self) -> None:
        ledger, _, first, _ = _two_subscriptions()
        with pytest.raises(ProviderNotFound):
            ledger.resume(first, 42, "0xs")
