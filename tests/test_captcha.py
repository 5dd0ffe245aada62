"""Tests for CAPTCHA/anti-bot classification and the solver."""

import pytest

from contactpilot.analyzer.captcha import CaptchaDetector, PageMarkers
from contactpilot.analyzer.captcha_solver import CaptchaSolver
from tests.fakes import FakeDocument, FakeElement, FakeFrame, FakePage

URL = "https://example.com/contact"


def page_with(document):
    page = FakePage({URL: document})
    page.show(URL, document)
    return page


def test_recaptcha_markers_are_classified():
    markers = PageMarkers(
        matched={".g-recaptcha", "[data-sitekey]"},
        iframes=["https://www.google.com/recaptcha/api2/anchor?k=abc"],
    )

    result = CaptchaDetector.classify_captcha(markers)

    assert result.is_captcha is True
    assert result.captcha_type == "recaptcha"
    assert result.confidence == 100
    assert "iframe:google.com/recaptcha" in result.matched_markers


def test_generic_text_falls_back_to_other():
    result = CaptchaDetector.classify_captcha(PageMarkers(text="please enter the captcha below"))

    assert result.is_captcha is True
    assert result.captcha_type == "other"
    assert 0 < result.confidence <= 100


def test_clean_page_has_no_captcha():
    result = CaptchaDetector.classify_captcha(PageMarkers(text="welcome to our shop"))

    assert result.is_captcha is False
    assert result.captcha_type is None
    assert result.confidence == 0


def test_anti_bot_groups_are_counted_once_each():
    markers = PageMarkers(
        matched={"#challenge-stage", ".cf-browser-verification", ".h-captcha"},
        text="too many requests, please slow down",
    )

    result = CaptchaDetector.classify_anti_bot(markers)

    assert result.has_protection is True
    assert result.protection_types == ["cloudflare", "captcha", "rate_limit"]
    assert result.confidence == 75


def test_page_markers_from_garbage():
    assert PageMarkers.from_raw(None) == PageMarkers()


@pytest.mark.asyncio
async def test_detect_captcha_reads_page_markers():
    page = page_with(FakeDocument(matched=[".h-captcha", "#hcaptcha"]))

    result = await CaptchaDetector().detect_captcha(page)

    assert result.captcha_type == "hcaptcha"
    assert result.confidence == 50


@pytest.mark.asyncio
async def test_solver_reports_disabled():
    page = page_with(FakeDocument(matched=[".g-recaptcha"]))

    result = await CaptchaSolver(enabled=False).solve(page)

    assert result.success is False
    assert result.method == "disabled"
    assert result.error


@pytest.mark.asyncio
async def test_solver_is_noop_without_captcha():
    result = await CaptchaSolver(grace_period=0).solve(page_with(FakeDocument()))

    assert result.success is True
    assert result.method == "none"


@pytest.mark.asyncio
async def test_solver_clicks_checkbox_and_accepts_token():
    document = FakeDocument(matched=[".g-recaptcha"])
    page = page_with(document)

    def solve():
        document.token = "03AGdBq2"

    checkbox = FakeElement(tag="span", on_click=solve)
    page.frames = [
        FakeFrame("https://example.com/contact"),
        FakeFrame(
            "https://www.google.com/recaptcha/api2/anchor",
            {"#recaptcha-anchor, .recaptcha-checkbox-border": checkbox},
        ),
    ]

    result = await CaptchaSolver(grace_period=0).solve(page)

    assert result.success is True
    assert result.method == "checkbox"
    assert checkbox.clicks == 1


@pytest.mark.asyncio
async def test_solver_fails_when_challenge_persists():
    page = page_with(FakeDocument(matched=[".g-recaptcha"]))

    result = await CaptchaSolver(grace_period=0).solve(page)

    assert result.success is False
    assert result.method == "passive"
    assert "recaptcha" in result.error


@pytest.mark.asyncio
async def test_wait_for_captcha_solution_times_out():
    page = page_with(FakeDocument(matched=[".g-recaptcha"]))

    assert await CaptchaDetector().wait_for_captcha_solution(page, timeout=0) is False
