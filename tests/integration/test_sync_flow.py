"""
Integration tests for the full start -> worker -> poll flow.

HTTP requests go through the FastAPI app, jobs through the SQLAlchemy job
store, and the worker runs the coordinator against fake Notion workspaces.
"""

import pytest
from fastapi.testclient import TestClient

from ledger_sync.api.main import create_app
from ledger_sync.jobs.controller import SyncJobController
from ledger_sync.jobs.worker import SyncWorker
from ledger_sync.sync.credentials import StaticCredentialProvider
from ledger_sync.sync.errors import RemoteUnauthorized
from ledger_sync.sync.models import Lecture

LECTURES = [
    {"id": "lec-1", "lectureNumber": 1, "title": "Introduktion"},
    {"id": "lec-11", "lectureNumber": 11, "title": "Nefrologi", "selections": {"Albin": True}},
    {"id": "lec-12", "lectureNumber": 12, "title": "Kardiologi"},
]


@pytest.fixture
def app_client(job_store, credentials, make_coordinator):
    worker = SyncWorker(
        job_store,
        coordinator_factory=lambda progress, cancel: make_coordinator(
            progress_callback=progress, cancel_token=cancel
        ),
    )
    app = create_app(
        job_store=job_store,
        controller=SyncJobController(job_store, credentials),
        worker=worker,
        start_worker=False,
        init_database=False,
    )
    with TestClient(app) as client:
        yield client, worker


def run(client, worker, path, body):
    job_id = client.post(path, json=body).json()["job_id"]
    assert worker.run_once() is True
    return client.get(f"/sync/jobs/{job_id}").json()


class TestSyncFlow:
    """Bulk seed, toggle and renumber through the public API."""

    def test_full_lifecycle(self, app_client, workspaces):
        client, worker = app_client

        seeded = run(client, worker, "/sync/jobs", {"lectures": LECTURES})
        assert seeded["status"] == "completed"
        assert seeded["result"]["created"] == 9
        assert seeded["processed_items"] == seeded["total_items"] == 9

        again = run(client, worker, "/sync/jobs", {"lectures": LECTURES})
        assert again["result"]["created"] == 0
        assert again["result"]["skip_count"] == 9

        kardiologi = LECTURES[2]
        selected = run(client, worker, "/sync/selection", {"lecture": kardiologi, "user": "Mattias"})
        assert selected["result"]["updated"] == 3
        unselected = run(
            client, worker, "/sync/selection",
            {"lecture": kardiologi, "user": "Mattias", "selected": False},
        )
        assert unselected["result"]["updated"] == 3
        for workspace in workspaces.values():
            record = next(r for r in workspace.records if r.display_title == "12. Kardiologi")
            assert record.selection_field == ""

        renumbered = [dict(lec) for lec in LECTURES]
        renumbered[2]["lectureNumber"] = 13
        repaired = run(client, worker, "/sync/jobs", {"lectures": renumbered, "mode": "number_repair"})
        assert repaired["status"] == "completed"
        assert repaired["result"]["updated"] == 3
        for workspace in workspaces.values():
            titles = sorted(r.display_title for r in workspace.records)
            assert titles == ["1. Introduktion", "11. Nefrologi", "13. Kardiologi"]

    def test_broken_workspace_is_isolated(self, app_client, workspaces):
        client, worker = app_client
        workspaces["Albin"].root_error = RemoteUnauthorized("HTTP 401")

        job = run(client, worker, "/sync/jobs", {"lectures": LECTURES})

        assert job["status"] == "completed"
        assert job["processed_items"] == job["total_items"]
        assert job["result"]["by_user"]["Albin"]["error"] == 3
        assert job["result"]["by_user"]["David"]["success"] == 3
        assert workspaces["Albin"].records == []

    def test_unconfigured_user(self, job_store, make_coordinator):
        credentials = StaticCredentialProvider({
            "David": ("secret-d", "page-d"),
            "Albin": ("secret-a", None),
            "Mattias": ("secret-m", "page-m"),
        })
        worker = SyncWorker(
            job_store,
            coordinator_factory=lambda progress, cancel: make_coordinator(
                credential_provider=credentials, progress_callback=progress, cancel_token=cancel
            ),
        )
        controller = SyncJobController(job_store, credentials)

        job = worker.run_job(controller.start_bulk_sync(_lectures()))

        assert job.processed_items == 9
        assert job.result["by_user"]["Albin"]["error"] == 3
        assert job.status.value == "completed"
        assert any(m.level == "error" and m.text.startswith("Albin:") for m in job.messages)


def _lectures():
    return [Lecture.from_dict(item) for item in LECTURES]
