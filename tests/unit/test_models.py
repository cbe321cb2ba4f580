"""
Unit tests for domain models, block builders and the roster loader.
"""

import json

import pytest

from ledger_sync.roster import InMemoryLectureRoster, by_numbers, load_roster
from ledger_sync.sync.blocks import MAX_TEXT_LENGTH, chunk_blocks, flashcard_blocks
from ledger_sync.sync.models import (
    ERROR,
    SKIPPED,
    SUCCESS,
    FlashcardGroup,
    FlashcardPage,
    ItemOutcome,
    Lecture,
    SyncSummary,
    UserCredential,
)


class TestLecture:
    """Tests for Lecture parsing."""

    def test_from_camel_case(self):
        lecture = Lecture.from_dict({
            "id": "lec-12",
            "lectureNumber": "12",
            "title": "Kardiologi",
            "subjectArea": "Medicin",
            "selections": {"David": True},
        })
        assert lecture.lecture_number == 12
        assert lecture.subject_area == "Medicin"
        assert lecture.label == "12. Kardiologi"

    def test_round_trip_through_job_payload(self, kardiologi):
        assert Lecture.from_dict(kardiologi.to_dict()) == kardiologi

    def test_credential_repr_hides_token(self):
        credential = UserCredential("David", "secret_abc", "page-1")
        assert "secret_abc" not in repr(credential)


class TestSyncSummary:
    """Tests for outcome aggregation."""

    def outcome(self, user, status, action="noop"):
        return ItemOutcome(user=user, lecture_id="l", lecture_label="1. X", status=status, action=action)

    def test_counts(self):
        summary = SyncSummary()
        summary.record(self.outcome("David", SUCCESS, "create"))
        summary.record(self.outcome("David", SUCCESS, "update_selection"))
        summary.record(self.outcome("Albin", SKIPPED))
        summary.record(self.outcome("Mattias", ERROR, "config_missing"))

        assert (summary.success_count, summary.skip_count, summary.error_count) == (2, 1, 1)
        assert (summary.created, summary.updated) == (1, 1)
        assert summary.per_user()["David"] == {SUCCESS: 2, SKIPPED: 0, ERROR: 0}

    def test_merge_keeps_cancelled(self):
        summary, other = SyncSummary(), SyncSummary()
        other.cancelled = True
        other.record(self.outcome("Albin", SUCCESS, "create"))
        summary.merge(other)

        assert summary.cancelled is True
        assert summary.created == 1

    def test_to_dict(self):
        summary = SyncSummary()
        summary.record(self.outcome("David", SKIPPED))
        summary.finish()
        data = summary.to_dict()

        assert data["skip_count"] == 1
        assert data["outcomes"][0]["user"] == "David"
        assert data["duration_seconds"] >= 0


class TestFlashcardBlocks:
    """Tests for Notion block building."""

    def test_group_layout(self):
        group = FlashcardGroup(
            question="Vad är EKG?",
            summary="Elektrokardiogram",
            pages=[FlashcardPage(3, "P-våg, QRS, T-våg")],
        )
        blocks = flashcard_blocks([group])

        assert blocks[0]["heading_2"]["rich_text"][0]["text"]["content"] == "📋 Vad är EKG?"
        assert blocks[1]["paragraph"]["rich_text"][0]["annotations"] == {"italic": True, "color": "gray"}
        assert blocks[2]["heading_3"]["rich_text"][0]["text"]["content"] == "📄 Sida 3 - Extraherad text"
        assert blocks[-1]["type"] == "divider"

    def test_long_text_split(self):
        blocks = flashcard_blocks([
            FlashcardGroup(question="Q", pages=[FlashcardPage(1, "x" * (MAX_TEXT_LENGTH + 5))])
        ])
        rich_text = blocks[2]["paragraph"]["rich_text"]
        assert [len(item["text"]["content"]) for item in rich_text] == [MAX_TEXT_LENGTH, 5]

    def test_chunk_blocks(self):
        assert [len(c) for c in chunk_blocks([{}] * 250)] == [100, 100, 50]
        assert chunk_blocks([]) == []


class TestRoster:
    """Tests for the in-memory roster and JSON loader."""

    def test_sorted_by_number(self, sample_lectures):
        roster = InMemoryLectureRoster(reversed(sample_lectures))
        assert [lec.lecture_number for lec in roster.list_lectures()] == [1, 11, 12]

    def test_filter_by_numbers(self, sample_lectures):
        roster = InMemoryLectureRoster(sample_lectures)
        assert [lec.id for lec in roster.list_lectures(by_numbers([12]))] == ["lec-12"]

    def test_unknown_lecture(self, sample_lectures):
        with pytest.raises(KeyError):
            InMemoryLectureRoster(sample_lectures).get_lecture("lec-99")

    @pytest.mark.parametrize("wrap", [False, True])
    def test_load_roster(self, tmp_path, wrap):
        items = [{"id": "lec-12", "lectureNumber": 12, "title": "Kardiologi"}]
        path = tmp_path / "roster.json"
        path.write_text(json.dumps({"lectures": items} if wrap else items), encoding="utf-8")

        roster = load_roster(path)

        assert roster.get_lecture("lec-12").title == "Kardiologi"
