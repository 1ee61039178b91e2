import unittest
from unittest.mock import AsyncMock, patch

import aiohttp

from src.wikisync.application.error_policy import ErrorPolicy, ErrorPolicyConfig
from src.wikisync.application.vote_collector import VoteCollector
from src.wikisync.domain.errors import FatalSyncError, TransientError
from src.wikisync.domain.models import PartialProgress, VoteBatch, VoteEvent
from src.wikisync.infrastructure.crom_client import CromClient

URL = "http://wiki.invalid/scp-001"


def make_votes(count: int) -> list[VoteEvent]:
    """Newest first: v<count> ... v1."""
    return [
        VoteEvent(URL, voter_id=i, timestamp=f"2024-01-{i:02d}T00:00:00Z", direction=1, voter_name=f"u{i}")
        for i in range(count, 0, -1)
    ]


class FakeVoteFetcher:
    """Serves a fixed newest-first vote list with integer-offset cursors."""

    def __init__(self, votes: list[VoteEvent], fail_at_calls: tuple[int, ...] = ()) -> None:
        self.votes = votes
        self.fail_at_calls = set(fail_at_calls)
        self.calls: list[tuple[str | None, int]] = []

    async def fetch_votes(self, _session, page_url, cursor, first):
        self.calls.append((cursor, first))
        if len(self.calls) in self.fail_at_calls:
            raise TransientError("connection reset")
        start = int(cursor) if cursor else 0
        items = self.votes[start : start + first]
        end = start + len(items)
        return VoteBatch(items=tuple(items), next_cursor=str(end), has_more=end < len(self.votes))


class ResettingSession:
    def __init__(self) -> None:
        self.posts = 0

    def post(self, url, json=None, timeout=None):
        self.posts += 1
        raise aiohttp.ClientOSError(104, "Connection reset by peer")


class VoteCollectorTests(unittest.IsolatedAsyncioTestCase):
    async def test_full_fetch_paginates_until_exhausted(self):
        fetcher = FakeVoteFetcher(make_votes(7))
        collector = VoteCollector(fetcher, batch_size=3)

        result = await collector.collect(None, URL, expected_count=7)

        self.assertTrue(result.is_complete)
        self.assertEqual(len(result.votes), 7)
        self.assertEqual(fetcher.calls, [(None, 3), ("3", 3), ("6", 1)])
        self.assertEqual(result.requests_ok, 3)

    async def test_incremental_stops_at_first_known_vote(self):
        votes = make_votes(10)
        known = frozenset(v.key for v in votes if v.voter_id <= 5)
        fetcher = FakeVoteFetcher(votes)
        collector = VoteCollector(fetcher, batch_size=100, incremental=True)

        result = await collector.collect(None, URL, expected_count=10, known_keys=known)

        self.assertTrue(result.is_complete)
        self.assertTrue(result.stopped_at_known)
        self.assertEqual([v.voter_id for v in result.votes], [10, 9, 8, 7, 6])

    async def test_incremental_disabled_ignores_known_votes(self):
        votes = make_votes(4)
        fetcher = FakeVoteFetcher(votes)
        collector = VoteCollector(fetcher, batch_size=100, incremental=False)

        result = await collector.collect(None, URL, 4, known_keys=frozenset(v.key for v in votes))

        self.assertEqual(len(result.votes), 4)
        self.assertFalse(result.stopped_at_known)

    async def test_never_fetches_more_than_expected(self):
        fetcher = FakeVoteFetcher(make_votes(50))
        collector = VoteCollector(fetcher, batch_size=20)

        result = await collector.collect(None, URL, expected_count=25)

        self.assertEqual(len(result.votes), 25)
        self.assertEqual([first for _, first in fetcher.calls], [20, 5])

    async def test_resume_continues_from_cursor(self):
        votes = make_votes(10)
        fetcher = FakeVoteFetcher(votes)
        collector = VoteCollector(fetcher, batch_size=100)

        result = await collector.collect(
            None,
            URL,
            expected_count=10,
            resume=PartialProgress(cursor="4", votes_collected=4),
        )

        self.assertTrue(result.resumed)
        self.assertEqual(fetcher.calls, [("4", 6)])
        self.assertEqual([v.voter_id for v in result.votes], [6, 5, 4, 3, 2, 1])

    async def test_resume_with_everything_collected_sends_no_request(self):
        fetcher = FakeVoteFetcher(make_votes(3))
        collector = VoteCollector(fetcher)

        result = await collector.collect(None, URL, 3, resume=PartialProgress(cursor="3", votes_collected=3))

        self.assertTrue(result.is_complete)
        self.assertEqual(fetcher.calls, [])

    async def test_error_without_policy_returns_partial_progress(self):
        fetcher = FakeVoteFetcher(make_votes(10), fail_at_calls=(2,))
        collector = VoteCollector(fetcher, batch_size=4)

        result = await collector.collect(None, URL, expected_count=10)

        self.assertFalse(result.is_complete)
        self.assertEqual(result.next_cursor, "4")
        self.assertEqual(len(result.votes), 4)
        self.assertEqual(result.fetched_count, 4)
        self.assertIsInstance(result.error, TransientError)

    async def test_error_policy_retries_then_succeeds(self):
        fetcher = FakeVoteFetcher(make_votes(6), fail_at_calls=(2,))
        policy = ErrorPolicy(ErrorPolicyConfig(max_retries=3))
        collector = VoteCollector(fetcher, batch_size=3, error_policy=policy)

        with patch("src.wikisync.application.error_policy.asyncio.sleep", new=AsyncMock()):
            result = await collector.collect(None, URL, expected_count=6)

        self.assertTrue(result.is_complete)
        self.assertEqual(len(result.votes), 6)
        self.assertEqual(fetcher.calls, [(None, 3), ("3", 3), ("3", 3)])
        self.assertEqual(policy.tallies["transient"], 1)

    async def test_connection_reset_is_retried_then_returns_partial(self):
        session = ResettingSession()
        policy = ErrorPolicy(ErrorPolicyConfig(max_retries=2))
        collector = VoteCollector(CromClient(), batch_size=10, error_policy=policy)

        with patch("src.wikisync.application.error_policy.asyncio.sleep", new=AsyncMock()):
            result = await collector.collect(session, URL, expected_count=5)

        self.assertFalse(result.is_complete)
        self.assertIsInstance(result.error, FatalSyncError)
        self.assertIsNone(result.next_cursor)
        self.assertEqual(session.posts, 3)
        self.assertEqual(policy.tallies["transient"], 3)

    async def test_fatal_policy_error_keeps_collected_votes(self):
        fetcher = FakeVoteFetcher(make_votes(6), fail_at_calls=(2, 3))
        policy = ErrorPolicy(ErrorPolicyConfig(max_retries=1))
        collector = VoteCollector(fetcher, batch_size=3, error_policy=policy)

        with patch("src.wikisync.application.error_policy.asyncio.sleep", new=AsyncMock()):
            result = await collector.collect(None, URL, expected_count=6)

        self.assertFalse(result.is_complete)
        self.assertIsInstance(result.error, FatalSyncError)
        self.assertEqual(len(result.votes), 3)
        self.assertEqual(result.next_cursor, "3")

    async def test_empty_batch_ends_walk(self):
        fetcher = FakeVoteFetcher([])
        collector = VoteCollector(fetcher)

        result = await collector.collect(None, URL, expected_count=5)

        self.assertTrue(result.is_complete)
        self.assertEqual(result.votes, ())
        self.assertEqual(len(fetcher.calls), 1)

    async def test_newest_vote_is_first_in_fetch_order(self):
        votes = make_votes(4)
        collector = VoteCollector(FakeVoteFetcher(votes), batch_size=2)

        stopped = await collector.collect(None, URL, 4, known_keys=frozenset({votes[0].key}))
        resumed = await collector.collect(None, URL, 4, resume=PartialProgress(cursor="2", votes_collected=2))

        self.assertTrue(stopped.stopped_at_known)
        self.assertEqual(stopped.votes, ())
        self.assertEqual(stopped.newest_vote, votes[0])
        self.assertIsNone(resumed.newest_vote)
