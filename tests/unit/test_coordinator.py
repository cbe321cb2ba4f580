"""
Unit tests for the sync coordinator.

Runs the full match -> reconcile -> apply loop against FakeWorkspace
instances (see conftest.py), covering idempotence, failure isolation,
retries and progress reporting.
"""

import pytest

from conftest import ALL_USERS, FakeWorkspace, remote
from ledger_sync.sync.constants import NO_REMOTE_RECORD_REASON
from ledger_sync.sync.coordinator import CancellationToken
from ledger_sync.sync.credentials import StaticCredentialProvider
from ledger_sync.sync.errors import RemoteUnauthorized, TransientRemoteError
from ledger_sync.sync.models import ERROR, SKIPPED, SUCCESS, FlashcardGroup, FlashcardPage, Lecture
from ledger_sync.sync.reconciler import UpdateSelection


class TestBulkSync:
    """Tests for run_bulk_sync."""

    def test_kardiologi_creates_one_record_per_user(self, make_coordinator, workspaces, kardiologi):
        summary = make_coordinator().run_bulk_sync([kardiologi])

        assert summary.success_count == 3
        assert summary.created == 3
        assert [o.user for o in summary.outcomes] == list(ALL_USERS)
        for workspace in workspaces.values():
            assert [r.display_title for r in workspace.records] == ["12. Kardiologi"]
            assert workspace.records[0].number == 12

    def test_second_run_creates_nothing(self, make_coordinator, workspaces, kardiologi):
        make_coordinator().run_bulk_sync([kardiologi])
        summary = make_coordinator().run_bulk_sync([kardiologi])

        assert summary.created == 0
        assert summary.skip_count == 3
        assert all(o.action == "noop" for o in summary.outcomes)
        assert all(ws.count("create_page") == 1 for ws in workspaces.values())

    def test_idempotent_over_roster(self, make_coordinator, workspaces, sample_lectures):
        make_coordinator().run_bulk_sync(sample_lectures)
        summary = make_coordinator().run_bulk_sync(sample_lectures)

        assert summary.created == 0
        assert summary.updated == 0
        assert all(len(ws.records) == len(sample_lectures) for ws in workspaces.values())

    def test_existing_record_keeps_unmapped_selections(self, make_coordinator, workspaces):
        lecture = Lecture(id="lec-11", lecture_number=11, title="Nefrologi", selections={"Albin": True})
        workspaces["David"].records.append(remote("d1", "11. Nefrologi", "M", 11))

        make_coordinator().run_bulk_sync([lecture], ["David"])

        assert workspaces["David"].get("d1").selection_field == "A, M"

    def test_one_lecture_does_not_match_eleven(self, make_coordinator, workspaces):
        intro = Lecture(id="lec-1", lecture_number=1, title="Introduktion")
        workspaces["David"].records.append(remote("d11", "11. Nefrologi", "", 11))

        summary = make_coordinator().run_bulk_sync([intro], ["David"])

        assert summary.created == 1
        assert workspaces["David"].get("d11").display_title == "11. Nefrologi"

    def test_duplicate_remote_records_never_create_more(self, make_coordinator, workspaces, kardiologi):
        workspaces["David"].records.extend([
            remote("d1", "12. Kardiologi", "", 12),
            remote("d2", "12. Kardiologi", "", 12),
        ])

        summary = make_coordinator().run_bulk_sync([kardiologi], ["David"])

        outcome = summary.outcomes[0]
        assert outcome.ambiguous is True
        assert outcome.status == SKIPPED
        assert workspaces["David"].count("create_page") == 0

    def test_number_drift_then_selection_in_one_pass(self, make_coordinator, workspaces):
        lecture = Lecture(id="lec-12", lecture_number=13, title="Kardiologi", selections={"David": True})
        workspaces["David"].records.append(remote("d1", "12. Kardiologi", "", 12))

        summary = make_coordinator().run_bulk_sync([lecture], ["David"])

        record = workspaces["David"].get("d1")
        assert record.display_title == "13. Kardiologi"
        assert record.selection_field == "D"
        assert summary.outcomes[0].action == "update_number+update_selection"

    def test_inserted_lecture_does_not_take_over_renumbered_page(self, make_coordinator, workspaces):
        lectures = [
            Lecture(id="lec-hyp", lecture_number=12, title="Hypertoni"),
            Lecture(id="lec-12", lecture_number=13, title="Kardiologi"),
        ]
        workspaces["David"].records.append(remote("d12", "12. Kardiologi", "D", 12))

        summary = make_coordinator().run_bulk_sync(lectures, ["David"])

        record = workspaces["David"].get("d12")
        assert record.display_title == "13. Kardiologi"
        assert record.selection_field == "D"
        titles = sorted(r.display_title for r in workspaces["David"].records)
        assert titles == ["12. Hypertoni", "13. Kardiologi"]
        assert [o.action for o in summary.outcomes] == ["create", "update_number"]

    def test_filtered_run_respects_roster_titles(self, make_coordinator, workspaces):
        hypertoni = Lecture(id="lec-hyp", lecture_number=12, title="Hypertoni")
        workspaces["David"].records.append(remote("d12", "12. Kardiologi", "D", 12))

        make_coordinator().run_bulk_sync(
            [hypertoni], ["David"], roster_titles=["Hypertoni", "Kardiologi"]
        )

        assert workspaces["David"].get("d12").display_title == "12. Kardiologi"
        assert workspaces["David"].count("create_page") == 1


class TestPartialFailure:
    """One broken workspace never stops the others."""

    def test_missing_config(self, make_coordinator, workspaces, kardiologi, progress):
        credentials = StaticCredentialProvider({
            "David": ("secret-d", "page-d"),
            "Albin": ("secret-a", "page-a"),
            "Mattias": (None, "page-m"),
        })

        summary = make_coordinator(credential_provider=credentials).run_bulk_sync([kardiologi])

        by_user = {o.user: o for o in summary.outcomes}
        assert by_user["David"].status == SUCCESS
        assert by_user["Albin"].status == SUCCESS
        assert by_user["Mattias"].status == ERROR
        assert by_user["Mattias"].error_kind == "config_missing"
        assert progress.processed == 3

    def test_unauthorized_token_marks_all_items(self, make_coordinator, workspaces, sample_lectures, progress):
        workspaces["Albin"].root_error = RemoteUnauthorized("HTTP 401")

        summary = make_coordinator().run_bulk_sync(sample_lectures)

        albin = [o for o in summary.outcomes if o.user == "Albin"]
        assert len(albin) == len(sample_lectures)
        assert all(o.error_kind == "remote_unauthorized" for o in albin)
        assert summary.success_count == 2 * len(sample_lectures)
        assert progress.processed == 3 * len(sample_lectures)
        # One progress call covers the whole skipped user
        assert (len(sample_lectures), "error") in [(d, lvl) for d, lvl, _ in progress.events]

    def test_missing_database(self, make_coordinator, workspaces, kardiologi):
        workspaces["Mattias"].has_database = False
        summary = make_coordinator().run_bulk_sync([kardiologi])
        assert summary.per_user()["Mattias"][ERROR] == 1
        assert summary.per_user()["David"][SUCCESS] == 1

    def test_item_failure_does_not_stop_user(self, make_coordinator, workspaces, sample_lectures):
        workspaces["David"].query_errors = [TransientRemoteError("502")] * 3

        summary = make_coordinator().run_bulk_sync(sample_lectures, ["David"])

        statuses = [o.status for o in summary.outcomes]
        assert statuses == [ERROR, SUCCESS, SUCCESS]
        assert summary.outcomes[0].error_kind == "retry_exhausted"

    def test_progress_callback_failure_propagates(self, make_coordinator, kardiologi):
        def broken(delta, level, message):
            raise RuntimeError("job store down")

        with pytest.raises(RuntimeError):
            make_coordinator(progress_callback=broken).run_bulk_sync([kardiologi])

    def test_update_without_record_is_rejected(self, make_coordinator, workspaces, kardiologi):
        coordinator = make_coordinator()
        workspace = coordinator._open_workspace("David", prefetch=False)

        with pytest.raises(TypeError):
            coordinator._apply(workspace, kardiologi, UpdateSelection("d1", "D"), None)
        assert workspaces["David"].count("update_page_properties") == 0


class TestRetries:
    """Retry behaviour inside the coordinator."""

    def test_transient_query_retried(self, make_coordinator, workspaces, kardiologi):
        workspaces["David"].query_errors = [TransientRemoteError("503")]
        summary = make_coordinator().run_bulk_sync([kardiologi], ["David"])
        assert summary.created == 1

    def test_create_that_landed_is_not_repeated(self, make_coordinator, workspaces, kardiologi):
        """A create that timed out after landing is found on retry, not duplicated."""
        workspaces["David"].land_then_fail = [TransientRemoteError("timeout")]

        summary = make_coordinator().run_bulk_sync([kardiologi], ["David"])

        assert summary.created == 1
        assert len(workspaces["David"].records) == 1
        assert workspaces["David"].count("create_page") == 1

    def test_create_that_failed_is_retried(self, make_coordinator, workspaces, kardiologi):
        workspaces["David"].create_errors = [TransientRemoteError("502")]

        make_coordinator().run_bulk_sync([kardiologi], ["David"])

        assert len(workspaces["David"].records) == 1
        assert workspaces["David"].count("create_page") == 2


class TestSelectionSync:
    """Tests for run_selection_sync."""

    def test_never_creates_missing_records(self, make_coordinator, workspaces, kardiologi):
        workspaces["David"].records.append(remote("d1", "12. Kardiologi", "", 12))

        summary = make_coordinator().run_selection_sync(kardiologi, "David", True)

        by_user = {o.user: o for o in summary.outcomes}
        assert by_user["David"].status == SUCCESS
        assert by_user["Albin"].status == SKIPPED
        assert by_user["Albin"].message == NO_REMOTE_RECORD_REASON
        assert workspaces["Albin"].count("create_page") == 0
        assert workspaces["Mattias"].records == []

    def test_select_then_unselect_restores_field(self, make_coordinator, workspaces, kardiologi):
        for user, workspace in workspaces.items():
            workspace.records.append(remote(f"{user}-1", "12. Kardiologi", "M", 12))

        coordinator = make_coordinator()
        coordinator.run_selection_sync(kardiologi, "Albin", True)
        assert workspaces["David"].get("David-1").selection_field == "A, M"

        coordinator.run_selection_sync(kardiologi, "Albin", False)
        for user, workspace in workspaces.items():
            assert workspace.get(f"{user}-1").selection_field == "M"

    def test_select_then_unselect_keeps_non_canonical_order(self, make_coordinator, workspaces, kardiologi):
        workspaces["David"].records.append(remote("d1", "12. Kardiologi", "A, D", 12))
        coordinator = make_coordinator()

        coordinator.run_selection_sync(kardiologi, "Mattias", True, ["David"])
        assert workspaces["David"].get("d1").selection_field == "A, D, M"

        coordinator.run_selection_sync(kardiologi, "Mattias", False, ["David"])
        assert workspaces["David"].get("d1").selection_field == "A, D"

    def test_roster_titles_guard_prefix_fallback(self, make_coordinator, workspaces):
        hypertoni = Lecture(id="lec-hyp", lecture_number=12, title="Hypertoni")
        workspaces["David"].records.append(remote("d12", "12. Kardiologi", "D", 12))

        summary = make_coordinator().run_selection_sync(
            hypertoni, "Albin", True, ["David"], roster_titles=["Hypertoni", "Kardiologi"]
        )

        assert summary.outcomes[0].message == NO_REMOTE_RECORD_REASON
        record = workspaces["David"].get("d12")
        assert (record.display_title, record.selection_field) == ("12. Kardiologi", "D")

    def test_alias_resolves(self, make_coordinator, workspaces, kardiologi):
        workspaces["Mattias"].records.append(remote("m1", "12. Kardiologi", "", 12))
        make_coordinator().run_selection_sync(kardiologi, "dronnlid", True, ["Mattias"])
        assert workspaces["Mattias"].get("m1").selection_field == "D"

    def test_unknown_user_rejected(self, make_coordinator, kardiologi):
        with pytest.raises(ValueError):
            make_coordinator().run_selection_sync(kardiologi, "Eve", True)

    def test_redundant_toggle_writes_nothing(self, make_coordinator, workspaces, kardiologi):
        workspaces["David"].records.append(remote("d1", "12. Kardiologi", "D", 12))
        summary = make_coordinator().run_selection_sync(kardiologi, "David", True, ["David"])
        assert summary.outcomes[0].status == SKIPPED
        assert workspaces["David"].count("update_page_properties") == 0


class TestNumberRepair:
    """Tests for run_number_repair."""

    def test_retitles_drifted_records(self, make_coordinator, workspaces):
        lectures = [
            Lecture(id="lec-1", lecture_number=1, title="Introduktion"),
            Lecture(id="lec-12", lecture_number=13, title="Kardiologi"),
        ]
        workspaces["David"].records.extend([
            remote("d1", "1. Introduktion", "", 1),
            remote("d12", "12. Kardiologi", "D", 12),
        ])

        summary = make_coordinator().run_number_repair(lectures, ["David"])

        assert workspaces["David"].get("d12").display_title == "13. Kardiologi"
        assert workspaces["David"].get("d12").selection_field == "D"
        assert [o.status for o in summary.outcomes] == [SKIPPED, SUCCESS]
        # Records are listed once per user, not once per lecture
        assert workspaces["David"].count("query_database") == 1

    def test_inserted_lecture_does_not_take_over_renumbered_page(self, make_coordinator, workspaces):
        lectures = [
            Lecture(id="lec-hyp", lecture_number=12, title="Hypertoni"),
            Lecture(id="lec-12", lecture_number=13, title="Kardiologi"),
        ]
        workspaces["David"].records.append(remote("d12", "12. Kardiologi", "D", 12))

        summary = make_coordinator().run_number_repair(lectures, ["David"])

        assert [(r.remote_id, r.display_title, r.selection_field) for r in workspaces["David"].records] == [
            ("d12", "13. Kardiologi", "D")
        ]
        assert [o.status for o in summary.outcomes] == [SKIPPED, SUCCESS]

    def test_number_prefix_alone_is_not_a_match(self, make_coordinator, workspaces):
        lecture = Lecture(id="lec-hyp", lecture_number=12, title="Hypertoni")
        workspaces["David"].records.append(remote("d12", "12. Kardiologi", "", 12))

        make_coordinator().run_number_repair([lecture], ["David"])

        assert workspaces["David"].get("d12").display_title == "12. Kardiologi"
        assert workspaces["David"].count("update_page_properties") == 0

    def test_missing_records_are_not_created(self, make_coordinator, workspaces, kardiologi):
        make_coordinator().run_number_repair([kardiologi], ["David"])
        assert workspaces["David"].count("create_page") == 0


class TestFlashcardSync:
    """Tests for run_flashcard_sync."""

    @pytest.fixture
    def groups(self):
        return [
            FlashcardGroup(
                question="Vad är hjärtminutvolym?",
                summary="Slagvolym gånger hjärtfrekvens",
                pages=[FlashcardPage(4, "HMV = SV x HF")],
            )
        ]

    def test_appends_to_matching_page(self, make_coordinator, workspaces, kardiologi, groups):
        workspaces["David"].records.append(remote("d1", "12. Kardiologi", "", 12))

        summary = make_coordinator().run_flashcard_sync(kardiologi, groups, ["David"])

        assert summary.outcomes[0].status == SUCCESS
        block_id, blocks = workspaces["David"].appended[0]
        assert block_id == "d1"
        assert [b["type"] for b in blocks] == ["heading_2", "paragraph", "heading_3", "paragraph", "divider"]

    def test_missing_page_is_error(self, make_coordinator, kardiologi, groups):
        summary = make_coordinator().run_flashcard_sync(kardiologi, groups, ["Albin"])
        assert summary.outcomes[0].status == ERROR
        assert summary.outcomes[0].error_kind == "remote_not_found"

    def test_large_groups_are_chunked(self, make_coordinator, workspaces, kardiologi):
        workspaces["David"].records.append(remote("d1", "12. Kardiologi", "", 12))
        pages = [FlashcardPage(i, f"text {i}") for i in range(60)]

        make_coordinator().run_flashcard_sync(
            kardiologi, [FlashcardGroup(question="Q", pages=pages)], ["David"]
        )

        sizes = [len(blocks) for _, blocks in workspaces["David"].appended]
        assert sizes == [100, 22]


class TestProgressAndCancellation:
    """Tests for progress reporting, throttling and cancellation."""

    def test_progress_reaches_total(self, make_coordinator, sample_lectures, progress):
        coordinator = make_coordinator()
        summary = coordinator.run_bulk_sync(sample_lectures)

        assert progress.processed == coordinator.total_items(len(sample_lectures))
        assert len(summary.outcomes) == progress.processed
        assert progress.events[0][2] == "David: 1. Introduktion -> create: created"

    def test_ambiguous_match_reported_as_warning(self, make_coordinator, workspaces, kardiologi, progress):
        workspaces["David"].records.extend([
            remote("d1", "12. Kardiologi", "", 12),
            remote("d2", "12. Kardiologi", "", 12),
        ])
        make_coordinator().run_bulk_sync([kardiologi], ["David"])
        assert progress.events[0][1] == "warning"

    def test_writes_are_throttled(self, make_coordinator, kardiologi):
        sleeps = []
        make_coordinator(write_delay_ms=200, sleep=sleeps.append).run_bulk_sync([kardiologi])
        assert sleeps == [0.2, 0.2, 0.2]

    def test_cancel_stops_between_items(self, make_coordinator, sample_lectures, progress):
        token = CancellationToken()

        def cancel_after_first(delta, level, message):
            progress(delta, level, message)
            token.cancel()

        summary = make_coordinator(
            progress_callback=cancel_after_first, cancel_token=token
        ).run_bulk_sync(sample_lectures)

        assert summary.cancelled is True
        assert len(summary.outcomes) == 1
        assert progress.processed == 1

    def test_parallel_users_match_sequential(self, make_coordinator, workspaces, sample_lectures, progress):
        summary = make_coordinator(parallel_users=True).run_bulk_sync(sample_lectures)

        assert summary.created == 3 * len(sample_lectures)
        assert [o.user for o in summary.outcomes][:: len(sample_lectures)] == list(ALL_USERS)
        assert progress.processed == 3 * len(sample_lectures)


def test_fake_workspace_is_isolated():
    """Sanity check: fakes start empty."""
    assert FakeWorkspace("David").records == []
