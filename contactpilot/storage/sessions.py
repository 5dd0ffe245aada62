"""Remote-control sessions and automation jobs."""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..automation.control import AutomationControl

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINISHED_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


@dataclass
class Session:
    """One authenticated remote-control session bound to at most one page."""

    token: str
    expires_at: float
    instance_id: Optional[str] = None
    tab_id: Optional[str] = None
    control: AutomationControl = field(default_factory=AutomationControl)
    created_at: float = field(default_factory=time.time)
    last_used: float = field(default_factory=time.time)

    def is_expired(self, now: float | None = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "instance_id": self.instance_id,
            "tab_id": self.tab_id,
            "paused": self.control.is_paused,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }


@dataclass
class AutomationJob:
    id: str
    website: str
    status: JobStatus = JobStatus.PENDING
    result: Optional[dict] = None
    error: Optional[str] = None
    control: AutomationControl = field(default_factory=AutomationControl)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "website": self.website,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class SessionStore:
    """
    Holds session tokens and automation jobs for the life of the service.

    Created at startup, closed at shutdown; closing cancels every outstanding
    control so paused attempts unblock and finish. Finished jobs are dropped
    once they are older than ``job_ttl``.
    """

    def __init__(
        self,
        session_ttl: float = 3600.0,
        purge_interval: float = 60.0,
        job_ttl: float = 86400.0,
    ):
        self.session_ttl = session_ttl
        self.job_ttl = job_ttl
        self.purge_interval = purge_interval
        self._sessions: dict[str, Session] = {}
        self._jobs: dict[str, AutomationJob] = {}
        self._purge_task: Optional[asyncio.Task] = None
        self._closed = False

    async def start(self) -> None:
        self._closed = False
        if self._purge_task is None and self.purge_interval > 0:
            self._purge_task = asyncio.create_task(self._purge_loop())

    async def close(self) -> None:
        self._closed = True
        if self._purge_task:
            self._purge_task.cancel()
            try:
                await self._purge_task
            except asyncio.CancelledError:
                pass
            self._purge_task = None
        for session in self._sessions.values():
            session.control.close()
        for job in self._jobs.values():
            job.control.close()
        self._sessions.clear()
        self._jobs.clear()

    async def _purge_loop(self) -> None:
        while True:
            await asyncio.sleep(self.purge_interval)
            removed = self.purge_expired()
            if removed:
                logger.info("Expired %s remote session(s)", removed)
            finished = self.purge_finished_jobs()
            if finished:
                logger.info("Dropped %s finished job(s)", finished)

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Session store is closed")

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def issue_session(self, instance_id: str | None = None, tab_id: str | None = None) -> Session:
        self._ensure_open()
        session = Session(
            token=secrets.token_urlsafe(32),
            expires_at=time.time() + self.session_ttl,
            instance_id=instance_id,
            tab_id=tab_id,
        )
        self._sessions[session.token] = session
        logger.info("Issued remote session (expires in %.0fs)", self.session_ttl)
        return session

    def validate(self, token: Any) -> Optional[Session]:
        """Return the live session for ``token`` or None."""
        if not isinstance(token, str) or not token:
            return None
        session = self._sessions.get(token)
        if session is None:
            return None
        if session.is_expired():
            self._sessions.pop(token, None)
            session.control.close()
            return None
        session.last_used = time.time()
        return session

    def bind(self, token: str, instance_id: str | None, tab_id: str | None) -> None:
        session = self._sessions.get(token)
        if session is not None:
            session.instance_id = instance_id
            session.tab_id = tab_id

    def revoke(self, token: str) -> Optional[Session]:
        session = self._sessions.pop(token, None)
        if session is not None:
            session.control.close()
        return session

    def purge_expired(self) -> int:
        now = time.time()
        expired = [t for t, s in self._sessions.items() if s.is_expired(now)]
        for token in expired:
            self.revoke(token)
        return len(expired)

    def list_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(self, website: str) -> AutomationJob:
        self._ensure_open()
        job = AutomationJob(id=f"job_{int(time.time() * 1000)}_{secrets.token_hex(4)}", website=website)
        self._jobs[job.id] = job
        return job

    def get_job(self, job_id: str) -> Optional[AutomationJob]:
        return self._jobs.get(job_id)

    def update_job(self, job_id: str, **changes: Any) -> Optional[AutomationJob]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        for key, value in changes.items():
            if key not in ("status", "result", "error"):
                raise ValueError(f"Unknown job field: {key}")
            setattr(job, key, JobStatus(value) if key == "status" else value)
        job.updated_at = time.time()
        return job

    def list_jobs(self, status: JobStatus | str | None = None) -> list[AutomationJob]:
        jobs = list(self._jobs.values())
        if status is not None:
            wanted = JobStatus(status)
            jobs = [j for j in jobs if j.status == wanted]
        return jobs

    def purge_finished_jobs(self, now: float | None = None) -> int:
        """Drop completed, failed and cancelled jobs not updated within ``job_ttl``."""
        cutoff = (now if now is not None else time.time()) - self.job_ttl
        stale = [
            job_id
            for job_id, job in self._jobs.items()
            if job.status in FINISHED_STATUSES and job.updated_at <= cutoff
        ]
        for job_id in stale:
            self._jobs.pop(job_id, None)
        return len(stale)

    def get_stats(self) -> dict[str, int]:
        stats = {"sessions": len(self._sessions), "jobs": len(self._jobs)}
        for status in JobStatus:
            stats[f"jobs_{status.value}"] = sum(1 for j in self._jobs.values() if j.status == status)
        return stats
