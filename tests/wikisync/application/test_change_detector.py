import unittest
from datetime import datetime, timezone

from src.wikisync.application.change_detector import ChangeDetector
from src.wikisync.domain.errors import TransientError
from src.wikisync.domain.models import PageSummary, PageVoteSnapshot

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


class FakeProber:
    def __init__(self, first_voter=None, error: Exception | None = None) -> None:
        self.first_voter = first_voter
        self.error = error
        self.calls: list[str] = []

    async def fetch_first_voter(self, _session, page_url):
        self.calls.append(page_url)
        if self.error is not None:
            raise self.error
        return self.first_voter


def page(vote_count=24, rating=7) -> PageSummary:
    return PageSummary(url="p", wikidot_id=1, title="P", rating=rating, vote_count=vote_count)


def snapshot(first_vote_id=42) -> PageVoteSnapshot:
    return PageVoteSnapshot(vote_count=24, rating=7, first_vote_id=first_vote_id, last_updated="2024-05-31T00:00:00Z")


class ChangeDetectorTests(unittest.IsolatedAsyncioTestCase):
    def make_detector(self, prober: FakeProber) -> ChangeDetector:
        return ChangeDetector(prober, retention_days=30, clock=lambda: NOW)

    async def test_probe_matching_first_vote_skips(self):
        prober = FakeProber(first_voter=42)
        decision = await self.make_detector(prober).detect(None, page(), snapshot(42))
        self.assertFalse(decision.needs_update)
        self.assertEqual(prober.calls, ["p"])

    async def test_probe_different_first_vote_fetches(self):
        prober = FakeProber(first_voter=43)
        decision = await self.make_detector(prober).detect(None, page(), snapshot(42))
        self.assertTrue(decision.needs_update)
        self.assertEqual(decision.reason, "first_vote_changed")

    async def test_cheap_checks_do_not_probe(self):
        prober = FakeProber(first_voter=42)
        detector = self.make_detector(prober)
        count_changed = await detector.detect(None, page(vote_count=25), snapshot())
        rating_changed = await detector.detect(None, page(rating=6), snapshot())
        new_page = await detector.detect(None, page(), None)
        self.assertEqual(
            [count_changed.reason, rating_changed.reason, new_page.reason],
            ["vote_count_changed", "rating_changed", "new_page"],
        )
        self.assertEqual(prober.calls, [])
        self.assertEqual(detector.probes_sent, 0)

    async def test_probe_failure_fails_open(self):
        prober = FakeProber(error=TransientError("timeout"))
        decision = await self.make_detector(prober).detect(None, page(), snapshot())
        self.assertTrue(decision.needs_update)
        self.assertEqual(decision.reason, "probe_failed")

    async def test_page_without_votes_needs_nothing(self):
        prober = FakeProber()
        decision = await self.make_detector(prober).detect(None, page(vote_count=0), None)
        self.assertFalse(decision.needs_update)
        self.assertEqual(prober.calls, [])
