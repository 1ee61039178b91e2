import unittest

from src.wikisync.domain.history import LIMITATIONS, SyncHistory, build_snapshot_payload
from src.wikisync.domain.models import (
    Attribution,
    DataAnomaly,
    DerivedUser,
    PageSummary,
    PageVoteSnapshot,
    Revision,
    VoteEvent,
)
from src.wikisync.domain.state import SyncState


def make_state() -> SyncState:
    state = SyncState(run_id="run-1", mode="full")
    state.add_page(
        PageSummary(
            url="b",
            wikidot_id=2,
            title="B",
            rating=1,
            vote_count=1,
            source_length=10,
            revisions=(Revision("b", "B", 11, "t", 1, "alice"),),
            attributions=(Attribution("b", "B", 1, "alice", "author"),),
        )
    )
    state.add_page(PageSummary(url="a", wikidot_id=1, title="A", rating=0, vote_count=0))
    state.ledger.add(VoteEvent("b", 3, "2024-01-02", 1, "carol"))
    state.page_states["b"] = PageVoteSnapshot(1, 1, 3, "2024-01-03T00:00:00+00:00")
    state.anomalies.append(DataAnomaly("vote_count_mismatch", "b", 2, 1, "1 missing votes"))
    return state


class SnapshotPayloadTests(unittest.TestCase):
    def test_payload_sections_and_metadata(self):
        payload = build_snapshot_payload(
            make_state(),
            [DerivedUser(wikidot_id=3, display_name="carol", roles={"voter"}, total_votes_given=1)],
            taken_at="2024-01-04T00:00:00+00:00",
            api_url="http://api.invalid",
            base_url="http://wiki.invalid",
            duration_seconds=1.23456,
            error_tallies={"transient": 2},
        )

        self.assertEqual([p["url"] for p in payload["pages"]], ["a", "b"])
        self.assertEqual(len(payload["voteRecords"]), 1)
        self.assertEqual(payload["users"][0]["wikidotId"], 3)
        self.assertEqual(len(payload["attributions"]), 1)
        self.assertEqual(len(payload["revisions"]), 1)
        self.assertEqual(payload["alternateTitles"], [])
        self.assertIn("b", payload["pageVoteStates"])
        metadata = payload["metadata"]
        self.assertEqual(metadata["runId"], "run-1")
        self.assertEqual(metadata["totalPages"], 2)
        self.assertEqual(metadata["pagesWithVotes"], 1)
        self.assertEqual(metadata["durationSeconds"], 1.235)
        self.assertEqual(metadata["errorTallies"], {"transient": 2})
        self.assertEqual(len(metadata["dataAnomalies"]), 1)
        self.assertEqual(metadata["limitations"], list(LIMITATIONS))

    def test_history_reads_stored_page_states(self):
        payload = build_snapshot_payload(
            make_state(),
            [],
            taken_at="2024-01-04T00:00:00+00:00",
            api_url="x",
            base_url="y",
            duration_seconds=0,
            error_tallies={},
        )
        history = SyncHistory.from_snapshot(payload)

        self.assertEqual(history.taken_at, "2024-01-04T00:00:00+00:00")
        self.assertEqual(history.snapshot_for("b").first_vote_id, 3)
        self.assertEqual(history.snapshot_for("b").last_updated, "2024-01-03T00:00:00+00:00")
        self.assertEqual(len(history.votes_for("b")), 1)
        self.assertEqual(len(history.pages), 2)

    def test_history_derives_states_when_missing(self):
        payload = {
            "metadata": {"timestamp": "2024-02-01T00:00:00Z"},
            "pages": [
                {"url": "p", "rating": 2, "voteCount": 2},
                {"url": "q", "rating": 0, "voteCount": 0},
            ],
            "voteRecords": [
                {"pageUrl": "p", "voterWikidotId": 1, "timestamp": "2024-01-01", "direction": 1},
                {"pageUrl": "p", "voterWikidotId": 2, "timestamp": "2024-01-05", "direction": 1},
            ],
        }
        history = SyncHistory.from_snapshot(payload)

        state = history.snapshot_for("p")
        self.assertEqual(state.vote_count, 2)
        self.assertEqual(state.first_vote_id, 2)
        self.assertEqual(state.last_updated, "2024-02-01T00:00:00Z")
        self.assertIsNone(history.snapshot_for("q"))
