"""aiohttp server exposing the remote-control channel and the automation API."""

from __future__ import annotations

import json
import logging
from typing import Optional

import aiohttp
from aiohttp import web

from ..automation.models import AutomationRequest
from ..automation.orchestrator import AutomationOrchestrator
from ..errors import ErrorCategory
from ..storage.sessions import JobStatus, SessionStore
from ..utils.domains import is_valid_http_url, normalize_website
from .controller import RemoteController
from .protocol import RemoteResponse

logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.AUTHENTICATION: 401,
}


class RemoteControlServer:
    """Serves ``/ws`` and the JSON HTTP endpoints on one aiohttp application."""

    def __init__(
        self,
        controller: RemoteController,
        sessions: SessionStore,
        orchestrator: AutomationOrchestrator,
        host: str = "127.0.0.1",
        port: int = 8765,
        enabled: bool = True,
    ):
        self.controller = controller
        self.sessions = sessions
        self.orchestrator = orchestrator
        self.host = host
        self.port = port
        self.enabled = enabled
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self.app = web.Application()
        self._register_routes()

    def _register_routes(self) -> None:
        self.app.router.add_get("/ws", self._ws_handler)
        self.app.router.add_post("/api/sessions", self._create_session)
        self.app.router.add_post("/api/command", self._command)
        self.app.router.add_post("/api/automation", self._automation)
        self.app.router.add_get("/api/jobs", self._list_jobs)
        self.app.router.add_get("/api/jobs/{job_id}", self._get_job)
        self.app.router.add_get("/api/history", self._history)

    async def start(self) -> None:
        if not self.enabled:
            logger.info("Remote control server disabled")
            return
        if self._runner:
            return
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        logger.info("Remote control server listening on %s:%s", self.host, self.port)

    async def stop(self) -> None:
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._runner = None
        self._site = None

    @staticmethod
    async def _read_json(request: web.Request) -> Optional[dict]:
        try:
            data = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _response_status(response: RemoteResponse) -> int:
        if response.success or response.error_category is None:
            return 200
        return _ERROR_STATUS.get(response.error_category, 200)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _ws_handler(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=30.0)
        await ws.prepare(request)
        logger.info("Remote client connected from %s", request.remote)

        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    payload = json.loads(msg.data)
                except json.JSONDecodeError:
                    await ws.send_json(
                        RemoteResponse(
                            success=False, error="Invalid JSON", error_category=ErrorCategory.VALIDATION
                        ).to_dict()
                    )
                    continue
                response = await self.controller.execute(payload)
                await ws.send_json(response.to_dict())
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.warning("Remote websocket error: %s", ws.exception())

        logger.info("Remote client disconnected")
        return ws

    async def _create_session(self, request: web.Request) -> web.Response:
        session = self.sessions.issue_session()
        return web.json_response({"token": session.token, "expires_at": session.expires_at}, status=201)

    async def _command(self, request: web.Request) -> web.Response:
        payload = await self._read_json(request)
        if payload is None:
            return web.json_response(
                RemoteResponse(
                    success=False, error="Invalid JSON payload", error_category=ErrorCategory.VALIDATION
                ).to_dict(),
                status=400,
            )
        response = await self.controller.execute(payload)
        return web.json_response(response.to_dict(), status=self._response_status(response))

    async def _automation(self, request: web.Request) -> web.Response:
        payload = await self._read_json(request)
        if payload is None:
            return web.json_response({"error": "Invalid JSON payload"}, status=400)

        try:
            automation_request = AutomationRequest.from_dict(payload)
        except (TypeError, ValueError) as exc:
            return web.json_response({"error": f"Invalid request: {exc}"}, status=400)
        if not is_valid_http_url(normalize_website(automation_request.website)):
            return web.json_response({"error": "website must be a valid URL"}, status=400)

        control = None
        token = payload.get("token")
        if token is not None:
            session = self.sessions.validate(token)
            if session is None:
                return web.json_response({"error": "Invalid or expired session token"}, status=401)
            control = session.control

        job = self.sessions.create_job(automation_request.website)
        if control is not None:
            job.control = control
        self.sessions.update_job(job.id, status=JobStatus.RUNNING)

        result = await self.orchestrator.run(automation_request, job.control)

        if result.success:
            status = JobStatus.COMPLETED
        elif result.error is not None and result.error.code == "CANCELLED":
            status = JobStatus.CANCELLED
        else:
            status = JobStatus.FAILED
        body = result.to_dict()
        self.sessions.update_job(
            job.id,
            status=status,
            result=body,
            error=result.error.message if result.error else None,
        )
        body["job_id"] = job.id
        return web.json_response(body)

    async def _list_jobs(self, request: web.Request) -> web.Response:
        status = request.query.get("status")
        try:
            jobs = self.sessions.list_jobs(status or None)
        except ValueError:
            return web.json_response({"error": f"Unknown status: {status}"}, status=400)
        return web.json_response({"jobs": [j.to_dict() for j in jobs]})

    async def _get_job(self, request: web.Request) -> web.Response:
        job = self.sessions.get_job(request.match_info["job_id"])
        if job is None:
            return web.json_response({"error": "Job not found"}, status=404)
        return web.json_response(job.to_dict())

    async def _history(self, request: web.Request) -> web.Response:
        try:
            limit = int(request.query.get("limit", "20"))
        except ValueError:
            limit = 20
        return web.json_response(
            {
                "history": self.controller.get_history(limit),
                "stats": self.controller.get_stats(),
            }
        )
