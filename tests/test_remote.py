"""Tests for the remote-control protocol, controller and HTTP/websocket server."""

import base64

import pytest
from aiohttp.test_utils import TestClient, TestServer

from contactpilot.automation.models import AutomationRequest, AutomationResult, AutomationStage
from contactpilot.browser import BrowserInstanceManager, BrowserPoolConfig
from contactpilot.errors import ErrorCategory, ValidationError
from contactpilot.remote import RemoteCommand, RemoteController, RemoteControlServer, validate_command
from contactpilot.remote.protocol import CommandType, RemoteResponse
from contactpilot.storage import ScreenshotManager, SessionStore
from contactpilot.utils.rate_limiter import RateLimiter
from tests.fakes import FakeDocument, FakeElement, FakeLauncher, FakePage

URL = "https://example.com/contact"


class DummyOrchestrator:
    def __init__(self):
        self.requests = []

    async def run(self, request, control=None):
        self.requests.append((request, control))
        return AutomationResult(success=True, contact_page_url=URL, stage=AutomationStage.COMPLETED)


def make_controller(tmp_path, **kwargs):
    document = FakeDocument(title="Contact")
    document.elements["#name"] = FakeElement()
    site = {URL: document}
    launcher = FakeLauncher(lambda: FakePage(site))
    pool = BrowserInstanceManager(BrowserPoolConfig(cleanup_interval=0), launcher=launcher)
    sessions = SessionStore()
    controller = RemoteController(pool, sessions, ScreenshotManager(tmp_path), fill_delay=0, **kwargs)
    return controller, sessions, pool, launcher, document


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


def test_validate_command_accepts_well_formed_commands():
    assert validate_command({"type": "OPEN", "data": {"url": URL}, "token": "t"}) == []
    assert validate_command({"type": "FILL", "data": {"fields": [{"selector": "#a", "value": "x"}]}}) == []
    assert validate_command({"type": "PAUSE"}) == []


@pytest.mark.parametrize(
    "raw,fragment",
    [
        ("OPEN", "JSON object"),
        ({"type": "DELETE"}, "Invalid command type"),
        ({"type": "OPEN", "data": {"url": "javascript:alert(1)"}}, "data.url"),
        ({"type": "OPEN", "data": "https://example.com"}, "data must be an object"),
        ({"type": "FILL", "data": {"fields": []}}, "non-empty data.fields"),
        ({"type": "FILL", "data": {"fields": [{"value": "x"}]}}, "selector"),
        ({"type": "CLOSE", "token": 42}, "token must be a string"),
    ],
)
def test_validate_command_reports_problems(raw, fragment):
    errors = validate_command(raw)

    assert errors
    assert any(fragment in e for e in errors)


def test_parse_raises_validation_error():
    with pytest.raises(ValidationError):
        RemoteCommand.parse({"type": "FILL"})

    command = RemoteCommand.parse({"type": "SCREENSHOT", "token": "abc"})
    assert command.type == CommandType.SCREENSHOT
    assert command.data == {}


def test_response_omits_empty_fields():
    payload = RemoteResponse(success=False, error="nope", error_category=ErrorCategory.TIMEOUT).to_dict()

    assert payload == {"success": False, "execution_time": 0.0, "error": "nope", "error_category": "timeout"}


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_missing_token_is_rejected_before_browser_work(tmp_path):
    controller, _, _, launcher, _ = make_controller(tmp_path)

    response = await controller.execute({"type": "OPEN", "data": {"url": URL}})

    assert response.success is False
    assert response.error_category == ErrorCategory.AUTHENTICATION
    assert launcher.calls == []


@pytest.mark.asyncio
async def test_invalid_command_is_a_validation_error(tmp_path):
    controller, sessions, _, _, _ = make_controller(tmp_path)
    token = sessions.issue_session().token

    response = await controller.execute({"type": "OPEN", "token": token, "data": {}})

    assert response.success is False
    assert response.error_category == ErrorCategory.VALIDATION


@pytest.mark.asyncio
async def test_open_fill_screenshot_close(tmp_path):
    controller, sessions, pool, _, document = make_controller(tmp_path)
    session = sessions.issue_session()
    token = session.token

    opened = await controller.execute({"type": "OPEN", "token": token, "data": {"url": URL}})
    assert opened.success is True
    assert opened.data["title"] == "Contact"
    assert opened.data["tab_id"] == session.tab_id
    assert pool.get_tab_info(session.tab_id) is not None

    filled = await controller.execute(
        {"type": "FILL", "token": token, "data": {"fields": [{"selector": "#name", "value": "Taro"}]}}
    )
    assert filled.success is True
    assert document.elements["#name"].value == "Taro"

    shot = await controller.execute({"type": "SCREENSHOT", "token": token, "data": {"save": True}})
    assert shot.success is True
    assert base64.b64decode(shot.screenshot).startswith(b"\x89PNG")
    assert shot.data["screenshot_id"].startswith("screenshot_")

    closed = await controller.execute({"type": "CLOSE", "token": token})
    assert closed.data == {"closed": True, "tab_closed": True}
    assert sessions.validate(token) is None

    after = await controller.execute({"type": "PAUSE", "token": token})
    assert after.error_category == ErrorCategory.AUTHENTICATION


@pytest.mark.asyncio
async def test_fill_without_open_page_is_not_found(tmp_path):
    controller, sessions, _, _, _ = make_controller(tmp_path)
    token = sessions.issue_session().token

    response = await controller.execute(
        {"type": "FILL", "token": token, "data": {"fields": [{"selector": "#name", "value": "x"}]}}
    )

    assert response.success is False
    assert response.error_category == ErrorCategory.RESOURCE_NOT_FOUND


@pytest.mark.asyncio
async def test_pause_and_resume_toggle_session_control(tmp_path):
    controller, sessions, _, _, _ = make_controller(tmp_path)
    session = sessions.issue_session()

    await controller.execute({"type": "PAUSE", "token": session.token})
    assert session.control.is_paused
    await controller.execute({"type": "RESUME", "token": session.token})
    assert not session.control.is_paused


@pytest.mark.asyncio
async def test_history_and_stats(tmp_path):
    controller, sessions, _, _, _ = make_controller(tmp_path)
    token = sessions.issue_session().token
    await controller.execute({"type": "PAUSE", "token": token})
    await controller.execute({"type": "PAUSE"})

    history = controller.get_history()
    stats = controller.get_stats()

    assert [h["success"] for h in history] == [False, True]
    assert stats["total"] == 2
    assert stats["failed"] == 1
    assert stats["by_type"] == {"PAUSE": 2}


@pytest.mark.asyncio
async def test_unexpected_failure_becomes_internal_error(tmp_path):
    controller, sessions, _, _, _ = make_controller(tmp_path)
    token = sessions.issue_session().token
    await controller.execute({"type": "OPEN", "token": token, "data": {"url": URL}})

    async def broken_capture(page, options=None):
        raise RuntimeError("encoder crashed")

    controller.screenshots.take_screenshot = broken_capture

    response = await controller.execute({"type": "SCREENSHOT", "token": token})

    assert response.success is False
    assert response.error_category == ErrorCategory.INTERNAL
    assert response.error == "encoder crashed"
    assert controller.get_history(1)[0]["success"] is False


@pytest.mark.asyncio
async def test_open_waits_for_a_rate_limit_slot(tmp_path):
    limiter = RateLimiter(max_requests_per_minute=1, delay=0)
    controller, sessions, _, launcher, _ = make_controller(
        tmp_path, rate_limiter=limiter, command_timeout=0.05
    )
    token = sessions.issue_session().token

    first = await controller.execute({"type": "OPEN", "token": token, "data": {"url": URL}})
    second = await controller.execute({"type": "OPEN", "token": token, "data": {"url": URL}})

    assert first.success is True
    assert second.success is False
    assert second.error_category == ErrorCategory.RATE_LIMIT
    assert len(launcher.calls) == 1


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


def make_server(tmp_path):
    controller, sessions, _, _, _ = make_controller(tmp_path)
    orchestrator = DummyOrchestrator()
    server = RemoteControlServer(controller, sessions, orchestrator, enabled=False)
    return server, sessions, orchestrator


@pytest.mark.asyncio
async def test_session_issuance_and_token_rejection(tmp_path):
    server, _, _ = make_server(tmp_path)

    async with TestClient(TestServer(server.app)) as client:
        resp = await client.post("/api/sessions")
        assert resp.status == 201
        token = (await resp.json())["token"]

        resp = await client.post("/api/command", json={"type": "PAUSE", "token": "forged"})
        assert resp.status == 401

        resp = await client.post("/api/command", json={"type": "PAUSE", "token": token})
        assert resp.status == 200
        assert (await resp.json())["data"] == {"paused": True}

        resp = await client.post("/api/command", data="{not json")
        assert resp.status == 400


@pytest.mark.asyncio
async def test_websocket_channel(tmp_path):
    server, sessions, _ = make_server(tmp_path)
    token = sessions.issue_session().token

    async with TestClient(TestServer(server.app)) as client:
        ws = await client.ws_connect("/ws")
        await ws.send_json({"type": "OPEN", "token": token, "data": {"url": URL}})
        opened = await ws.receive_json()
        await ws.send_str("garbage")
        invalid = await ws.receive_json()
        await ws.close()

    assert opened["success"] is True
    assert opened["data"]["url"] == URL
    assert invalid["error_category"] == "validation"


@pytest.mark.asyncio
async def test_websocket_survives_a_failing_command(tmp_path):
    server, sessions, _ = make_server(tmp_path)
    token = sessions.issue_session().token

    async def broken_capture(page, options=None):
        raise RuntimeError("encoder crashed")

    server.controller.screenshots.take_screenshot = broken_capture

    async with TestClient(TestServer(server.app)) as client:
        ws = await client.ws_connect("/ws")
        await ws.send_json({"type": "OPEN", "token": token, "data": {"url": URL}})
        await ws.receive_json()
        await ws.send_json({"type": "SCREENSHOT", "token": token})
        failed = await ws.receive_json()
        await ws.send_json({"type": "PAUSE", "token": token})
        paused = await ws.receive_json()
        await ws.close()

    assert failed["success"] is False
    assert failed["error_category"] == "internal"
    assert paused["success"] is True


@pytest.mark.asyncio
async def test_automation_endpoint_records_job(tmp_path):
    server, sessions, orchestrator = make_server(tmp_path)
    session = sessions.issue_session()

    async with TestClient(TestServer(server.app)) as client:
        resp = await client.post(
            "/api/automation",
            json={"website": "example.com", "business_name": "ACME", "token": session.token},
        )
        assert resp.status == 200
        body = await resp.json()
        assert body["success"] is True
        assert body["contact_page_url"] == URL

        resp = await client.get(f"/api/jobs/{body['job_id']}")
        job = await resp.json()
        assert job["status"] == "completed"

        resp = await client.get("/api/jobs", params={"status": "completed"})
        assert len((await resp.json())["jobs"]) == 1

        resp = await client.get("/api/jobs", params={"status": "bogus"})
        assert resp.status == 400

        resp = await client.post("/api/automation", json={"website": "ftp://example.com"})
        assert resp.status == 400

        resp = await client.post("/api/automation", json={"website": "example.com", "token": "forged"})
        assert resp.status == 401

    request, control = orchestrator.requests[0]
    assert request.business_name == "ACME"
    assert control is session.control


def test_automation_request_parses_flags_and_millisecond_timeout():
    request = AutomationRequest.from_dict(
        {"website": " example.com ", "enable_auto_submit": "false", "require_captcha_solved": 1, "timeout": 30000}
    )

    assert request.website == "example.com"
    assert request.enable_auto_submit is False
    assert request.require_captcha_solved is True
    assert request.timeout == 30.0
    assert AutomationRequest.from_dict({"website": "example.com"}).timeout is None


@pytest.mark.parametrize(
    "payload",
    [
        {"enable_auto_submit": "maybe"},
        {"enable_auto_submit": 2},
        {"timeout": "soon"},
        {"timeout": 0},
        {"timeout": True},
    ],
)
def test_automation_request_rejects_malformed_options(payload):
    with pytest.raises(ValueError):
        AutomationRequest.from_dict({"website": "example.com", **payload})


@pytest.mark.asyncio
async def test_automation_endpoint_rejects_malformed_flag(tmp_path):
    server, _, orchestrator = make_server(tmp_path)

    async with TestClient(TestServer(server.app)) as client:
        resp = await client.post("/api/automation", json={"website": "example.com", "enable_auto_submit": "maybe"})
        assert resp.status == 400
        assert "enable_auto_submit" in (await resp.json())["error"]

    assert orchestrator.requests == []
