"""
Sync Coordinator - Orchestrates lecture roster → Notion synchronization.

Core responsibilities:
- Resolve each user's workspace (course page → lecture database) once per run
- Run every (user, lecture) pair through match → reconcile → apply
- Isolate failures per user and per pair; never let one abort the run
- Throttle writes cooperatively and report progress after every pair

Entry points:
- run_bulk_sync: make sure every lecture exists in every user's database
- run_selection_sync: mirror one user's toggle into all users' databases
- run_number_repair: retitle remote records whose numbering drifted
- run_flashcard_sync: append flashcard summaries to a lecture's pages
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from loguru import logger

from config import get_settings
from ledger_sync.sync.blocks import chunk_blocks, flashcard_blocks
from ledger_sync.sync.constants import resolve_user_name
from ledger_sync.sync.credentials import CredentialProvider, SettingsCredentialProvider
from ledger_sync.sync.errors import RemoteNotFound, SyncError
from ledger_sync.sync.models import (
    ERROR,
    SKIPPED,
    SUCCESS,
    FlashcardGroup,
    ItemOutcome,
    Lecture,
    RemoteRecord,
    SyncSummary,
    UserCredential,
)
from ledger_sync.sync.notion_client import NotionWorkspaceClient, RemoteStoreClient
from ledger_sync.sync.reconciler import (
    Create,
    Decision,
    LectureReconciler,
    NoOp,
    RemoteSearchResult,
    UpdateNumber,
    UpdateSelection,
    UserAction,
)
from ledger_sync.sync.retry import RetryExecutor
from ledger_sync.sync.titles import reserved_titles, select_match

# processed_delta, level, message
ProgressCallback = Callable[[int, str, str], None]


class CancellationToken:
    """Checked between items; cancelling never undoes writes already made."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class _Workspace:
    """A resolved user workspace for the duration of one run."""

    user: str
    client: RemoteStoreClient
    database_id: str
    records: list[RemoteRecord] | None = None


PairHandler = Callable[[_Workspace, Lecture], ItemOutcome]


class SyncCoordinator:
    """
    Runs sync jobs over the configured users' Notion workspaces.

    Features:
    - Per-user and per-pair failure isolation
    - Retry of transient remote failures (RetryExecutor)
    - Cooperative write throttle (notion_write_delay_ms)
    - Optional parallelism across users (sequential within a user)
    - Progress callback and cancellation token
    """

    def __init__(
        self,
        credentials: CredentialProvider | None = None,
        client_factory: Callable[[UserCredential], RemoteStoreClient] | None = None,
        retry: RetryExecutor | None = None,
        reconciler: LectureReconciler | None = None,
        progress_callback: ProgressCallback | None = None,
        write_delay_ms: int | None = None,
        parallel_users: bool | None = None,
        cancel_token: CancellationToken | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            credentials: Resolves (token, course page) per user
            client_factory: Builds a workspace client from a credential
            retry: Retry executor wrapping every remote call
            reconciler: Decision function (built from settings if not provided)
            progress_callback: Optional callback(processed_delta, level, message)
            write_delay_ms: Pause after each remote write
            parallel_users: Run users concurrently
            cancel_token: Checked between items
            sleep: Sleep function (injected by tests)
        """
        settings = get_settings()
        self._credentials = credentials or SettingsCredentialProvider(settings)
        self._client_factory = client_factory or NotionWorkspaceClient.for_credential
        self._retry = retry or RetryExecutor(sleep=sleep)
        self._reconciler = reconciler or LectureReconciler()
        self._progress_callback = progress_callback
        self._write_delay = (
            write_delay_ms if write_delay_ms is not None else settings.notion_write_delay_ms
        ) / 1000.0
        self._parallel = settings.sync_parallel_users if parallel_users is None else parallel_users
        self._cancel_token = cancel_token or CancellationToken()
        self._sleep = sleep
        self._progress_lock = threading.Lock()

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def users(self, users: Sequence[str] | None = None) -> list[str]:
        return list(users) if users is not None else self._credentials.users()

    def total_items(self, lecture_count: int, users: Sequence[str] | None = None) -> int:
        """Number of (user, lecture) pairs a run will process."""
        return lecture_count * len(self.users(users))

    def run_bulk_sync(
        self,
        lectures: Sequence[Lecture],
        users: Sequence[str] | None = None,
        roster_titles: Sequence[str] | None = None,
    ) -> SyncSummary:
        """
        Ensure every lecture exists in every user's database.

        The prefix fallback never takes a page titled after another lecture
        of this run or of roster_titles (the full roster of a filtered run).
        """
        action = UserAction.bulk_seed()
        reserved = reserved_titles([*(roster_titles or ()), *(lecture.title for lecture in lectures)])
        return self._run(
            "bulk sync",
            lectures,
            users,
            lambda ws, lecture: self._reconcile_pair(ws, lecture, action, reserved),
        )

    def run_selection_sync(
        self,
        lecture: Lecture,
        acting_user: str,
        selected: bool,
        users: Sequence[str] | None = None,
        roster_titles: Sequence[str] | None = None,
    ) -> SyncSummary:
        """
        Mirror one user's toggle into every user's database.

        Never creates a remote record: a lecture missing from a store yields a
        skipped outcome until a bulk sync has run. Pages titled after any of
        roster_titles are never taken by the prefix fallback.

        Raises:
            ValueError: If acting_user is not on the roster
        """
        user = resolve_user_name(acting_user)
        if user is None:
            raise ValueError(f"Unknown user: {acting_user}")

        action = UserAction.toggle(user, selected)
        reserved = reserved_titles([*(roster_titles or ()), lecture.title])
        return self._run(
            f"selection sync ({user} {action.kind.value})",
            [lecture],
            users,
            lambda ws, lec: self._reconcile_pair(ws, lec, action, reserved),
        )

    def run_number_repair(
        self,
        lectures: Sequence[Lecture],
        users: Sequence[str] | None = None,
    ) -> SyncSummary:
        """
        Retitle remote records whose "N." prefix no longer matches the roster.

        Records are matched on their canonical title only: a number prefix is
        exactly what may have drifted.
        """
        action = UserAction.repair_numbers()
        return self._run(
            "number repair",
            lectures,
            users,
            lambda ws, lecture: self._reconcile_pair(ws, lecture, action, exact_only=True),
            prefetch=True,
        )

    def run_flashcard_sync(
        self,
        lecture: Lecture,
        groups: Sequence[FlashcardGroup],
        users: Sequence[str] | None = None,
    ) -> SyncSummary:
        """Append flashcard group blocks to the lecture's page in every database."""
        blocks = flashcard_blocks(list(groups))
        return self._run(
            "flashcard sync",
            [lecture],
            users,
            lambda ws, lec: self._flashcard_pair(ws, lec, blocks),
        )

    # =========================================================================
    # RUN LOOP
    # =========================================================================

    def _run(
        self,
        label: str,
        lectures: Sequence[Lecture],
        users: Sequence[str] | None,
        handler: PairHandler,
        prefetch: bool = False,
    ) -> SyncSummary:
        user_list = self.users(users)
        logger.info(
            f"Starting {label}: {len(lectures)} lectures x {len(user_list)} users "
            f"(parallel={self._parallel})"
        )

        summary = SyncSummary()

        if self._parallel and len(user_list) > 1:
            with ThreadPoolExecutor(max_workers=len(user_list)) as executor:
                futures = [
                    executor.submit(self._process_user, user, lectures, handler, prefetch)
                    for user in user_list
                ]
                # Merge in roster order so outcome lists are deterministic
                for future in futures:
                    summary.merge(future.result())
        else:
            for user in user_list:
                summary.merge(self._process_user(user, lectures, handler, prefetch))
                if self._cancel_token.cancelled:
                    summary.cancelled = True
                    break

        summary.finish()
        logger.info(
            f"{label.capitalize()} complete: {summary.success_count} succeeded, "
            f"{summary.skip_count} skipped, {summary.error_count} errors "
            f"({summary.created} created)"
        )
        return summary

    def _process_user(
        self,
        user: str,
        lectures: Sequence[Lecture],
        handler: PairHandler,
        prefetch: bool,
    ) -> SyncSummary:
        summary = SyncSummary()
        if self._cancel_token.cancelled:
            summary.cancelled = True
            return summary

        try:
            workspace = self._open_workspace(user, prefetch)
        except Exception as e:
            kind = e.kind if isinstance(e, SyncError) else "unexpected"
            logger.error(f"Skipping {user}: {e}")
            for lecture in lectures:
                summary.record(
                    ItemOutcome(
                        user=user,
                        lecture_id=lecture.id,
                        lecture_label=lecture.label,
                        status=ERROR,
                        action=kind,
                        message=str(e),
                        error_kind=kind,
                    )
                )
            self._report(len(lectures), "error", f"{user}: {e}")
            return summary

        for lecture in lectures:
            if self._cancel_token.cancelled:
                logger.warning(f"Sync cancelled before {lecture.label} for {user}")
                summary.cancelled = True
                break

            try:
                outcome = handler(workspace, lecture)
            except Exception as e:
                kind = e.kind if isinstance(e, SyncError) else "unexpected"
                logger.error(f"Failed {lecture.label} for {user}: {e}")
                outcome = ItemOutcome(
                    user=user,
                    lecture_id=lecture.id,
                    lecture_label=lecture.label,
                    status=ERROR,
                    action=kind,
                    message=str(e),
                    error_kind=kind,
                )

            summary.record(outcome)
            level = {SUCCESS: "info", SKIPPED: "info", ERROR: "error"}[outcome.status]
            if outcome.ambiguous and level == "info":
                level = "warning"
            self._report(1, level, f"{user}: {lecture.label} -> {outcome.action}: {outcome.message}")

        return summary

    def _open_workspace(self, user: str, prefetch: bool) -> _Workspace:
        credential = self._credentials.resolve(user)
        client = self._client_factory(credential)

        self._retry.run(
            lambda: client.get_root_page(credential.root_page_id),
            f"get course page for {user}",
        )
        database_id = self._retry.run(
            lambda: client.find_child_database(credential.root_page_id),
            f"find lecture database for {user}",
        )

        records = None
        if prefetch:
            records = self._retry.run(
                lambda: client.query_database(database_id),
                f"list lectures for {user}",
            )
            logger.info(f"Found {len(records)} lectures in {user}'s database")

        return _Workspace(user=user, client=client, database_id=database_id, records=records)

    def _report(self, delta: int, level: str, message: str) -> None:
        # Job store errors propagate: without progress the run is unobservable
        if self._progress_callback is None:
            return
        with self._progress_lock:
            self._progress_callback(delta, level, message)

    def _throttle(self) -> None:
        if self._write_delay > 0:
            self._sleep(self._write_delay)

    # =========================================================================
    # PAIR HANDLERS
    # =========================================================================

    def _search(self, ws: _Workspace, lecture: Lecture) -> list[RemoteRecord]:
        if ws.records is not None:
            return ws.records
        return self._retry.run(
            lambda: ws.client.query_database(ws.database_id, lecture),
            f"query {lecture.label} for {ws.user}",
        )

    def _reconcile_pair(
        self,
        ws: _Workspace,
        lecture: Lecture,
        action: UserAction,
        reserved: frozenset[str] = frozenset(),
        exact_only: bool = False,
    ) -> ItemOutcome:
        record, ambiguous = select_match(
            lecture, self._search(ws, lecture), ws.user, reserved, exact_only
        )

        applied: list[Decision] = []
        decision: Decision = NoOp("not reconciled")

        # A number fix is applied first; the record is then reconciled again
        # so a pending selection change still goes out in the same pass.
        for _ in range(2):
            decision = self._reconciler.reconcile(
                lecture, RemoteSearchResult(record, ambiguous), action
            )
            if isinstance(decision, NoOp):
                break
            record = self._apply(ws, lecture, decision, record, reserved)
            applied.append(decision)
            if not isinstance(decision, UpdateNumber):
                break

        if not applied:
            return ItemOutcome(
                user=ws.user,
                lecture_id=lecture.id,
                lecture_label=lecture.label,
                status=SKIPPED,
                action=NoOp.name,
                message=decision.reason if isinstance(decision, NoOp) else "",
                ambiguous=ambiguous,
            )

        return ItemOutcome(
            user=ws.user,
            lecture_id=lecture.id,
            lecture_label=lecture.label,
            status=SUCCESS,
            action="+".join(d.name for d in applied),
            message=self._describe(applied),
            ambiguous=ambiguous,
        )

    def _apply(
        self,
        ws: _Workspace,
        lecture: Lecture,
        decision: Decision,
        record: RemoteRecord | None,
        reserved: frozenset[str] = frozenset(),
    ) -> RemoteRecord:
        if isinstance(decision, Create):
            created = self._create(ws, lecture, decision, reserved)
            self._throttle()
            if ws.records is not None:
                ws.records.append(created)
            return created

        if record is None:
            raise TypeError(f"Cannot apply {decision.name} without a remote record")

        if isinstance(decision, UpdateSelection):
            self._retry.run(
                lambda: ws.client.update_page_properties(decision.remote_id, decision.payload),
                f"update selection of {lecture.label} for {ws.user}",
            )
            self._throttle()
            record.selection_field = decision.selection_field
            return record

        if isinstance(decision, UpdateNumber):
            self._retry.run(
                lambda: ws.client.update_page_properties(decision.remote_id, decision.payload),
                f"update number of {lecture.label} for {ws.user}",
            )
            self._throttle()
            logger.info(f"Renumbered '{record.display_title}' -> '{decision.new_title}' for {ws.user}")
            record.display_title = decision.new_title
            record.number = decision.number
            return record

        raise TypeError(f"Cannot apply {decision!r}")

    def _create(
        self,
        ws: _Workspace,
        lecture: Lecture,
        decision: Create,
        reserved: frozenset[str] = frozenset(),
    ) -> RemoteRecord:
        """Create a page; a retried attempt first checks whether the failed one landed."""
        attempts = 0

        def create() -> RemoteRecord:
            nonlocal attempts
            attempts += 1
            if attempts > 1:
                existing, _ = select_match(
                    lecture, ws.client.query_database(ws.database_id, lecture), ws.user, reserved
                )
                if existing is not None:
                    logger.info(f"Earlier create of {lecture.label} for {ws.user} landed; reusing it")
                    return existing
            return ws.client.create_page(ws.database_id, decision.payload)

        created = self._retry.run(create, f"create {lecture.label} for {ws.user}")
        logger.info(f"Created {lecture.label} in {ws.user}'s database")
        return created

    def _flashcard_pair(self, ws: _Workspace, lecture: Lecture, blocks: list[dict]) -> ItemOutcome:
        record, ambiguous = select_match(lecture, self._search(ws, lecture), ws.user)
        if record is None:
            return ItemOutcome(
                user=ws.user,
                lecture_id=lecture.id,
                lecture_label=lecture.label,
                status=ERROR,
                action="append_blocks",
                message=f"Lecture page not found: {lecture.label}",
                error_kind=RemoteNotFound.kind,
            )

        sent = 0
        for chunk in chunk_blocks(blocks):
            sent += self._retry.run(
                lambda chunk=chunk: ws.client.append_blocks(record.remote_id, chunk),
                f"append flashcards to {lecture.label} for {ws.user}",
            )
            self._throttle()

        return ItemOutcome(
            user=ws.user,
            lecture_id=lecture.id,
            lecture_label=lecture.label,
            status=SUCCESS,
            action="append_blocks",
            message=f"Appended {sent} blocks",
            ambiguous=ambiguous,
        )

    @staticmethod
    def _describe(applied: list[Decision]) -> str:
        parts = []
        for decision in applied:
            if isinstance(decision, Create):
                parts.append("created")
            elif isinstance(decision, UpdateNumber):
                parts.append(f"retitled to '{decision.new_title}'")
            elif isinstance(decision, UpdateSelection):
                parts.append(f"selection set to '{decision.selection_field}'")
        return ", ".join(parts)
