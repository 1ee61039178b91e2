import unittest
from datetime import datetime, timezone

from src.wikisync.domain.change_policy import evaluate_probe, evaluate_vote_change, is_snapshot_expired
from src.wikisync.domain.models import PageVoteSnapshot

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def snapshot(count=24, rating=7, first=100, updated="2024-05-30T00:00:00+00:00") -> PageVoteSnapshot:
    return PageVoteSnapshot(vote_count=count, rating=rating, first_vote_id=first, last_updated=updated)


class VoteChangePolicyTests(unittest.TestCase):
    def test_missing_snapshot_is_new_page(self):
        decision = evaluate_vote_change(None, 3, 1, now=NOW, retention_days=30)
        self.assertTrue(decision.needs_update)
        self.assertEqual(decision.reason, "new_page")

    def test_vote_count_changed(self):
        decision = evaluate_vote_change(snapshot(), 25, 7, now=NOW, retention_days=30)
        self.assertTrue(decision.needs_update)
        self.assertEqual(decision.reason, "vote_count_changed")

    def test_rating_changed_with_same_count(self):
        decision = evaluate_vote_change(snapshot(), 24, 5, now=NOW, retention_days=30)
        self.assertTrue(decision.needs_update)
        self.assertEqual(decision.reason, "rating_changed")

    def test_matching_count_and_rating_requires_probe(self):
        decision = evaluate_vote_change(snapshot(), 24, 7, now=NOW, retention_days=30)
        self.assertFalse(decision.needs_update)
        self.assertTrue(decision.needs_probe)

    def test_probe_same_first_voter_is_unchanged(self):
        decision = evaluate_probe(snapshot(first=100), 100)
        self.assertFalse(decision.needs_update)
        self.assertEqual(decision.reason, "unchanged")

    def test_probe_different_first_voter_needs_update(self):
        decision = evaluate_probe(snapshot(first=100), 101)
        self.assertTrue(decision.needs_update)
        self.assertEqual(decision.reason, "first_vote_changed")

    def test_expired_snapshot_is_refetched(self):
        old = snapshot(updated="2024-01-01T00:00:00Z")
        decision = evaluate_vote_change(old, 24, 7, now=NOW, retention_days=30)
        self.assertTrue(decision.needs_update)
        self.assertEqual(decision.reason, "snapshot_expired")

    def test_retention_disabled_never_expires(self):
        old = snapshot(updated="2020-01-01T00:00:00Z")
        self.assertFalse(is_snapshot_expired(old, NOW, None))
        self.assertFalse(is_snapshot_expired(old, NOW, 0))

    def test_unparsable_timestamp_counts_as_expired(self):
        self.assertTrue(is_snapshot_expired(snapshot(updated="yesterday"), NOW, 30))
