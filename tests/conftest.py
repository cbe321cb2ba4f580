"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests:
an in-memory job store, sample lectures and fake Notion workspaces that
implement the RemoteStoreClient protocol without network access.
"""
import pytest
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from ledger_sync.db.database import init_db, make_engine, make_session_factory
from ledger_sync.jobs.store import JobStore
from ledger_sync.sync.coordinator import SyncCoordinator
from ledger_sync.sync.credentials import StaticCredentialProvider
from ledger_sync.sync.errors import RemoteNotFound
from ledger_sync.sync.models import Lecture, RemoteRecord
from ledger_sync.sync.notion_client import record_from_page
from ledger_sync.sync.reconciler import LectureReconciler
from ledger_sync.sync.retry import RetryExecutor

PROPERTY_MAP = {
    "title": "Föreläsning",
    "number": "Nummer",
    "selection": "Vems",
    "subject": "Subject Area",
    "url": "URL",
}

APP_BASE_URL = "https://ledger.example.test"

ALL_USERS = ("David", "Albin", "Mattias")


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (fakes, in-memory database)")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


# ========================================
# Fakes
# ========================================


class FakeWorkspace:
    """
    In-memory stand-in for one user's Notion workspace.

    Failure injection:
        root_error: raised by get_root_page
        query_errors / create_errors / update_errors: raised (in order) by the
            next calls to the matching method
        land_then_fail: exceptions raised by create_page AFTER the page was stored
    """

    def __init__(self, user, records=None, has_database=True):
        self.user = user
        self.database_id = f"db-{user.lower()}"
        self.records = list(records or [])
        self.has_database = has_database
        self.root_error = None
        self.query_errors = []
        self.create_errors = []
        self.update_errors = []
        self.land_then_fail = []
        self.calls = []
        self.appended = []
        self._next_id = 0

    def get_root_page(self, page_id):
        self.calls.append(("get_root_page", page_id))
        if self.root_error is not None:
            raise self.root_error
        return {"id": page_id}

    def find_child_database(self, page_id):
        self.calls.append(("find_child_database", page_id))
        if not self.has_database:
            raise RemoteNotFound(f"No database found on {self.user}'s course page {page_id}")
        return self.database_id

    def query_database(self, database_id, lecture=None):
        self.calls.append(("query_database", database_id))
        if self.query_errors:
            raise self.query_errors.pop(0)
        return list(self.records)

    def create_page(self, database_id, properties):
        self.calls.append(("create_page", database_id))
        if self.create_errors:
            raise self.create_errors.pop(0)
        self._next_id += 1
        page = {"id": f"{self.user.lower()}-page-{self._next_id}", "properties": properties}
        record = record_from_page(page, PROPERTY_MAP)
        self.records.append(record)
        if self.land_then_fail:
            raise self.land_then_fail.pop(0)
        return record

    def update_page_properties(self, page_id, properties):
        self.calls.append(("update_page_properties", page_id))
        if self.update_errors:
            raise self.update_errors.pop(0)
        record = self.get(page_id)
        updated = record_from_page({"id": page_id, "properties": properties}, PROPERTY_MAP)
        if PROPERTY_MAP["title"] in properties:
            record.display_title = updated.display_title
            record.number = updated.number
        if PROPERTY_MAP["selection"] in properties:
            record.selection_field = updated.selection_field
        return {"id": page_id}

    def append_blocks(self, block_id, children):
        self.calls.append(("append_blocks", block_id))
        self.appended.append((block_id, list(children)))
        return len(children)

    def get(self, remote_id):
        return next(r for r in self.records if r.remote_id == remote_id)

    def count(self, method):
        return sum(1 for name, _ in self.calls if name == method)


class ProgressRecorder:
    """Collects (delta, level, message) progress callbacks."""

    def __init__(self):
        self.events = []

    def __call__(self, delta, level, message):
        self.events.append((delta, level, message))

    @property
    def processed(self):
        return sum(delta for delta, _, _ in self.events)


def no_sleep(seconds):
    return None


# ========================================
# Fixtures
# ========================================


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def session_factory():
    """Session factory bound to a fresh in-memory SQLite database."""
    engine = make_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def job_store(session_factory):
    """Job store backed by the in-memory database."""
    return JobStore(session_factory)


@pytest.fixture
def kardiologi():
    """Lecture 12 with no recorded selections."""
    return Lecture(id="lec-12", lecture_number=12, title="Kardiologi", subject_area="Medicin")


@pytest.fixture
def sample_lectures():
    """A small roster."""
    return [
        Lecture(id="lec-1", lecture_number=1, title="Introduktion"),
        Lecture(id="lec-11", lecture_number=11, title="Nefrologi", selections={"Albin": True}),
        Lecture(id="lec-12", lecture_number=12, title="Kardiologi", subject_area="Medicin"),
    ]


@pytest.fixture
def reconciler():
    """Reconciler with the default lecture database schema."""
    return LectureReconciler(property_map=dict(PROPERTY_MAP), app_base_url=APP_BASE_URL)


@pytest.fixture
def workspaces():
    """One empty fake workspace per roster user."""
    return {user: FakeWorkspace(user) for user in ALL_USERS}


@pytest.fixture
def credentials():
    """Static credentials for all three users."""
    return StaticCredentialProvider(
        {user: (f"secret-{user.lower()}", f"page-{user.lower()}") for user in ALL_USERS}
    )


@pytest.fixture
def progress():
    return ProgressRecorder()


@pytest.fixture
def make_coordinator(workspaces, credentials, reconciler, progress):
    """Build a coordinator over the fake workspaces with no backoff or throttle."""

    def build(credential_provider=None, **kwargs):
        options = {
            "credentials": credential_provider or credentials,
            "client_factory": lambda credential: workspaces[credential.user],
            "retry": RetryExecutor(max_attempts=3, base_delay_ms=0, jitter=False, sleep=no_sleep),
            "reconciler": reconciler,
            "progress_callback": progress,
            "write_delay_ms": 0,
            "parallel_users": False,
            "sleep": no_sleep,
        }
        options.update(kwargs)
        return SyncCoordinator(**options)

    return build


def remote(remote_id, title, selection="", number=None):
    """Shorthand for a RemoteRecord."""
    return RemoteRecord(remote_id=remote_id, display_title=title, selection_field=selection, number=number)
