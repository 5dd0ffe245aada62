"""Tests for the post-submission success heuristic."""

import pytest

from contactpilot.automation.success import check_submission_success, evaluate_submission
from tests.fakes import FakeDocument, FakeElement, FakePage, contact_form

FORM_URL = "https://example.com/contact"
THANKS_URL = "https://example.com/contact/thanks"


def state(**overrides):
    base = {
        "url": THANKS_URL,
        "title": "Thanks",
        "text": "Thank you for your message. We will reply soon.",
        "validationErrors": 0,
        "emptyRequired": 0,
        "formsVisible": 0,
        "submitVisible": 0,
    }
    base.update(overrides)
    return base


def test_all_signals_agree():
    check = evaluate_submission(FORM_URL, state())

    assert check.success is True
    assert check.url_changed is True
    assert check.success_phrase == "thank you for your message"
    assert check.reasons == []


def test_unchanged_url_fails_even_with_success_phrase():
    check = evaluate_submission(FORM_URL, state(url=FORM_URL + "/"))

    assert check.success is False
    assert check.url_changed is False
    assert "URL did not change after submission" in check.reasons


def test_fragment_only_change_is_not_a_url_change():
    check = evaluate_submission(FORM_URL, state(url=FORM_URL + "#sent"))

    assert check.success is False


def test_missing_success_phrase_fails():
    check = evaluate_submission(FORM_URL, state(text="Welcome back"))

    assert check.success is False
    assert "No success message found" in check.reasons


def test_error_text_vetoes_success():
    check = evaluate_submission(
        FORM_URL, state(text="Thank you for your message. Email address is invalid.")
    )

    assert check.success is False
    assert check.error_phrase == "invalid"


@pytest.mark.parametrize(
    "field,value",
    [("validationErrors", 1), ("emptyRequired", 2), ("formsVisible", 1), ("submitVisible", 1)],
)
def test_visible_form_state_vetoes_success(field, value):
    assert evaluate_submission(FORM_URL, state(**{field: value})).success is False


def test_japanese_success_phrase():
    check = evaluate_submission(FORM_URL, state(title="完了", text="送信完了しました"))

    assert check.success is True


@pytest.mark.asyncio
async def test_submission_that_replaces_the_form_is_confirmed():
    form_page = FakeDocument(title="Contact", forms=[contact_form()])
    page = FakePage({FORM_URL: form_page})
    await page.goto(FORM_URL)

    def submit():
        page.show(THANKS_URL, FakeDocument(title="Sent", text="Your message has been sent."))

    form_page.elements["#contact-form >> button"] = FakeElement(tag="button", on_click=submit)

    before = await check_submission_success(page, FORM_URL)
    await form_page.elements["#contact-form >> button"].click()
    after = await check_submission_success(page, FORM_URL)

    assert before.success is False
    assert after.success is True


@pytest.mark.asyncio
async def test_unreadable_page_is_not_a_success():
    page = FakePage()
    page.evaluate_error = RuntimeError("Execution context was destroyed")

    check = await check_submission_success(page, FORM_URL)

    assert check.success is False
    assert check.reasons
