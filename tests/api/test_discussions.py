"""
Tests for the discussion status and reprocess routes.
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

import asyncio
import pytest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from threadrouter.main import app
from threadrouter.models.records import (
    Discussion,
    DiscussionStatus,
    Job,
    JobStage,
    JobStatus,
)
from threadrouter.services.runtime import Runtime, get_runtime


@pytest.fixture
def runtime(settings, store, registry, processor):
    return Runtime(
        settings=settings,
        store=store,
        registry=registry,
        processor=processor,
        runner=MagicMock(),
    )


@pytest.fixture
def client(runtime):
    app.dependency_overrides[get_runtime] = lambda: runtime
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def discussion(store):
    discussion = Discussion(
        flow_id="flow_1",
        input_id="input_1",
        platform="chat",
        workspace_id="W1",
        source_thread_id="C1:1.0",
        source_url="https://chat.example/thread/1",
        title="Login button broken",
        content="The login button is broken",
        author_handle="U1",
        status=DiscussionStatus.FAILED,
        error="timeout",
    )
    asyncio.run(store.create_discussion(discussion))
    return discussion


def add_job(store, discussion, status):
    job = Job(discussion_id=discussion.id, stage=JobStage.THREAD_BUILDING, status=status)
    asyncio.run(store.create_job(job))
    return job


def test_get_discussion_with_jobs(client, store, discussion):
    job = add_job(store, discussion, JobStatus.FAILED)

    response = client.get(f"/api/discussions/{discussion.id}")

    assert response.status_code == 200
    data = response.json()
    assert data["discussion"]["id"] == discussion.id
    assert data["discussion"]["status"] == "failed"
    assert [j["id"] for j in data["jobs"]] == [job.id]


def test_get_unknown_discussion(client):
    assert client.get("/api/discussions/disc_missing").status_code == 404


def test_reprocess_creates_job_from_thread_building(client, runtime, store, discussion):
    add_job(store, discussion, JobStatus.FAILED)

    response = client.post(f"/api/discussions/{discussion.id}/reprocess")

    assert response.status_code == 202
    data = response.json()
    assert data["discussion_id"] == discussion.id
    assert data["status"] == "pending"
    runtime.runner.spawn.assert_called_once_with(data["job_id"])

    job = asyncio.run(store.get_job(data["job_id"]))
    assert job.stage == JobStage.THREAD_BUILDING
    stored = asyncio.run(store.get_discussion(discussion.id))
    assert stored.status == DiscussionStatus.PENDING
    assert stored.error is None


@pytest.mark.parametrize("status", [JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.RETRYING])
def test_reprocess_conflicts_with_active_job(client, runtime, store, discussion, status):
    active = add_job(store, discussion, status)

    response = client.post(f"/api/discussions/{discussion.id}/reprocess")

    assert response.status_code == 409
    assert active.id in response.json()["detail"]
    runtime.runner.spawn.assert_not_called()


def test_reprocess_unknown_discussion(client):
    assert client.post("/api/discussions/disc_missing/reprocess").status_code == 404
