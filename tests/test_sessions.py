"""Tests for the session/job store and the cooperative automation control."""

import asyncio
import time

import pytest

from contactpilot.automation.control import AutomationControl
from contactpilot.errors import AutomationCancelled
from contactpilot.storage.sessions import JobStatus, SessionStore


@pytest.mark.asyncio
async def test_checkpoint_blocks_while_paused():
    control = AutomationControl()
    control.pause()
    assert control.is_paused

    waiter = asyncio.create_task(control.checkpoint("navigation"))
    await asyncio.sleep(0.01)
    assert not waiter.done()

    control.resume()
    await asyncio.wait_for(waiter, timeout=1)
    assert not control.is_paused


@pytest.mark.asyncio
async def test_close_unblocks_paused_checkpoint_with_cancellation():
    control = AutomationControl()
    control.pause()
    waiter = asyncio.create_task(control.checkpoint("form submission"))
    await asyncio.sleep(0.01)

    control.close()

    with pytest.raises(AutomationCancelled):
        await asyncio.wait_for(waiter, timeout=1)
    assert control.is_closed
    assert not control.is_paused


@pytest.mark.asyncio
async def test_checkpoint_passes_when_running():
    await AutomationControl().checkpoint()


def test_issue_and_validate_session():
    store = SessionStore(session_ttl=60)

    session = store.issue_session()

    assert store.validate(session.token) is session
    assert store.validate("not-a-token") is None
    assert store.validate(None) is None
    assert store.validate(123) is None


def test_expired_session_is_rejected_and_closed():
    store = SessionStore(session_ttl=-1)
    session = store.issue_session()

    assert store.validate(session.token) is None
    assert session.control.is_closed
    assert store.list_sessions() == []


def test_revoke_and_purge():
    store = SessionStore(session_ttl=60)
    kept = store.issue_session()
    revoked = store.issue_session()
    stale = store.issue_session()
    stale.expires_at = 0

    assert store.revoke(revoked.token) is revoked
    assert store.purge_expired() == 1
    assert [s.token for s in store.list_sessions()] == [kept.token]


def test_bind_attaches_page():
    store = SessionStore()
    session = store.issue_session()

    store.bind(session.token, "browser_1", "page_1")

    assert (session.instance_id, session.tab_id) == ("browser_1", "page_1")


def test_job_lifecycle():
    store = SessionStore()
    job = store.create_job("https://example.com")
    assert job.status == JobStatus.PENDING

    store.update_job(job.id, status="running")
    assert store.get_job(job.id).status == JobStatus.RUNNING
    store.update_job(job.id, status=JobStatus.COMPLETED, result={"success": True})

    assert [j.id for j in store.list_jobs("completed")] == [job.id]
    assert store.list_jobs(JobStatus.FAILED) == []
    assert store.get_stats()["jobs_completed"] == 1
    with pytest.raises(ValueError):
        store.update_job(job.id, website="https://other.org")
    assert store.update_job("job_missing", status="failed") is None


@pytest.mark.asyncio
async def test_close_tears_everything_down():
    store = SessionStore(purge_interval=0.01)
    await store.start()
    session = store.issue_session()
    job = store.create_job("https://example.com")

    await store.close()

    assert session.control.is_closed
    assert job.control.is_closed
    assert store.get_stats()["sessions"] == 0
    with pytest.raises(RuntimeError):
        store.issue_session()


def test_finished_jobs_are_purged_after_ttl():
    store = SessionStore(job_ttl=60)
    done = store.create_job("https://example.com")
    failed = store.create_job("https://example.org")
    running = store.create_job("https://example.net")
    store.update_job(done.id, status="completed")
    store.update_job(failed.id, status="failed")
    store.update_job(running.id, status="running")

    assert store.purge_finished_jobs() == 0
    assert store.purge_finished_jobs(now=time.time() + 61) == 2
    assert [j.id for j in store.list_jobs()] == [running.id]


@pytest.mark.asyncio
async def test_purge_loop_drops_finished_jobs():
    store = SessionStore(purge_interval=0.01, job_ttl=0)
    await store.start()
    job = store.create_job("https://example.com")
    store.update_job(job.id, status="cancelled")

    await asyncio.sleep(0.05)

    assert store.get_job(job.id) is None
    await store.close()
