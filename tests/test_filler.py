"""Tests for field mapping, filling and submission."""

import pytest

from contactpilot.analyzer.forms import FormDetector
from contactpilot.automation.filler import FormFillingEngine
from contactpilot.automation.models import FieldInput
from tests.fakes import FakeDocument, FakeElement, FakePage, contact_form

URL = "https://example.com/contact"
NAME = '#contact-form >> input[name="name"]'
EMAIL = '#contact-form >> input[name="email"]'
MESSAGE = '#contact-form >> textarea[name="message"]'


def detected_form(raw=None):
    return FormDetector().classify_forms([raw or contact_form()]).forms[0]


def contact_page(**elements):
    document = FakeDocument(title="Contact", forms=[contact_form()])
    document.elements.update(
        {
            "#contact-form": FakeElement(tag="form"),
            NAME: FakeElement(),
            EMAIL: FakeElement(input_type="email"),
            MESSAGE: FakeElement(tag="textarea", input_type=""),
        }
    )
    document.elements.update(elements)
    page = FakePage({URL: document})
    page.show(URL, document)
    return page, document


def engine_for(page, **kwargs):
    kwargs.setdefault("fill_delay", 0.05)
    kwargs.setdefault("field_timeout", 0.1)
    kwargs.setdefault("submit_delay", 0)
    return FormFillingEngine(page, **kwargs)


def test_mapping_priority_and_single_use():
    form = detected_form()
    fields = [
        FieldInput(value="hello", selector=MESSAGE),
        FieldInput(value="a@b.jp", name="EMAIL"),
        FieldInput(value="Taro", label="your name"),
        FieldInput(value="dup", name="email"),
    ]

    mapped = FormFillingEngine.map_fields_to_form(fields, form, passthrough=False)

    assert [(m.selector, m.value) for m in mapped] == [
        (MESSAGE, "hello"),
        (EMAIL, "a@b.jp"),
        (NAME, "Taro"),
    ]


def test_mapping_passthrough_builds_name_selector():
    mapped = FormFillingEngine.map_fields_to_form(
        [{"name": "company", "value": "ACME"}, {"selector": "#extra", "value": "x"}], detected_form()
    )

    assert [(m.selector, m.value) for m in mapped] == [('[name="company"]', "ACME"), ("#extra", "x")]


def test_mapping_by_placeholder():
    raw = contact_form(
        fields=[{"tag": "input", "type": "text", "name": "f9", "id": "", "placeholder": "Phone number"}]
    )

    mapped = FormFillingEngine.map_fields_to_form([FieldInput(value="0312345678", label="phone")], detected_form(raw))

    assert mapped[0].selector == '#contact-form >> input[name="f9"]'


def test_configuration_update():
    engine = FormFillingEngine(FakePage())

    config = engine.update_configuration(fill_delay=0.2, max_retries=5)

    assert config["fill_delay"] == 0.2
    assert engine.get_configuration()["max_retries"] == 5
    with pytest.raises(ValueError):
        engine.update_configuration(speed=1)


@pytest.mark.asyncio
async def test_fill_form_types_text_with_delay():
    page, document = contact_page()
    engine = engine_for(page)

    result = await engine.fill_form(
        "#contact-form",
        [FieldInput(value="Taro", selector=NAME), FieldInput(value="hi there", selector=MESSAGE)],
    )

    assert result.success is True
    assert result.filled_fields == 2
    assert document.elements[NAME].value == "Taro"
    assert document.elements[MESSAGE].typed == [("hi there", 50.0)]


@pytest.mark.asyncio
async def test_one_missing_field_does_not_abort_the_rest():
    page, document = contact_page()
    engine = engine_for(page)

    result = await engine.fill_form(
        "#contact-form",
        [
            FieldInput(value="x", selector="#does-not-exist"),
            FieldInput(value="a@b.jp", selector=EMAIL),
            FieldInput(value="no selector"),
        ],
    )

    assert result.success is True
    assert result.filled_fields == 1
    assert result.total_fields == 3
    assert [r.success for r in result.per_field_results] == [False, True, False]
    assert document.elements[EMAIL].value == "a@b.jp"


@pytest.mark.asyncio
async def test_hidden_field_is_not_filled():
    page, _ = contact_page(**{NAME: FakeElement(visible=False)})

    result = await engine_for(page).fill_form("#contact-form", [FieldInput(value="Taro", selector=NAME)])

    assert result.success is False
    assert result.filled_fields == 0


@pytest.mark.asyncio
async def test_missing_form_fails_every_field():
    page, _ = contact_page()

    result = await engine_for(page).fill_form("#nope", [FieldInput(value="Taro", selector=NAME)])

    assert result.success is False
    assert "not found" in result.per_field_results[0].error


@pytest.mark.asyncio
async def test_select_checkbox_and_radio():
    select = FakeElement(tag="select", options=["sales", "support"])
    checkbox = FakeElement(input_type="checkbox")
    radio = FakeElement(input_type="radio", value="email")
    page, _ = contact_page(**{"#topic": select, "#agree": checkbox, "#reply-email": radio})

    result = await engine_for(page).fill_form(
        None,
        [
            FieldInput(value="support", selector="#topic"),
            FieldInput(value="true", selector="#agree"),
            FieldInput(value="email", selector="#reply-email"),
            FieldInput(value="billing", selector="#topic"),
        ],
    )

    assert [r.success for r in result.per_field_results] == [True, True, True, False]
    assert select.value == "support"
    assert checkbox.checked is True
    assert radio.checked is True


@pytest.mark.asyncio
async def test_auto_fill_form_uses_detected_form():
    page, document = contact_page()

    result = await engine_for(page).auto_fill_form([{"name": "email", "value": "a@b.jp"}])

    assert result.success is True
    assert document.elements[EMAIL].value == "a@b.jp"


@pytest.mark.asyncio
async def test_auto_fill_form_index_out_of_range():
    page, _ = contact_page()

    result = await engine_for(page).auto_fill_form([{"name": "email", "value": "a@b.jp"}], form_index=3)

    assert result.success is False


@pytest.mark.asyncio
async def test_submit_clicks_submit_control():
    submitted = []
    button = FakeElement(tag="button", input_type="submit", on_click=lambda: submitted.append(True))
    page, _ = contact_page(**{'#contact-form >> button[type="submit"]': button})

    assert await engine_for(page).submit_form("#contact-form") is True
    assert submitted == [True]


@pytest.mark.asyncio
async def test_submit_falls_back_to_form_submit():
    submitted = []
    page, _ = contact_page(**{"#contact-form": FakeElement(tag="form", on_click=lambda: submitted.append(True))})

    assert await engine_for(page).submit_form("#contact-form") is True
    assert submitted == [True]


@pytest.mark.asyncio
async def test_submit_reports_failure():
    page, _ = contact_page()

    assert await engine_for(page).submit_form("#missing-form") is False
