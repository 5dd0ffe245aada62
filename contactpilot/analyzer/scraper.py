"""Contact data extraction (emails, phones, links, structured data)."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import httpx
from playwright.async_api import Page

from .models import ScrapedData, ScrapeResult
from .rules import CONTACT_LINK_WORDS, FORM_CONTACT_KEYWORDS, contains_any

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
PHONE_PATTERNS = [
    re.compile(r"\+\d{1,4}[-.\s]?\(?\d{1,4}\)?[-.\s]?\d{1,4}[-.\s]?\d{2,9}"),
    re.compile(r"\(?0\d{1,4}\)?[-.\s]?\d{1,4}[-.\s]\d{4}\b"),
    re.compile(r"\b0[3-9]0?[-.\s]?\d{4}[-.\s]?\d{4}\b"),
]
MIN_PHONE_DIGITS = 9
MAX_PHONE_DIGITS = 15

PAGE_DATA_SCRIPT = """
() => {
    const meta = (name) => {
        const el = document.querySelector(`meta[name="${name}"], meta[property="og:${name}"]`);
        return el ? (el.getAttribute('content') || '') : '';
    };
    const links = Array.from(document.querySelectorAll('a[href]')).slice(0, 500).map((a) => ({
        text: (a.textContent || '').trim().slice(0, 200),
        href: a.href,
    }));
    const forms = Array.from(document.querySelectorAll('form')).map((f) => ({
        action: f.getAttribute('action') || '',
        method: (f.getAttribute('method') || 'get').toLowerCase(),
        fields: Array.from(f.querySelectorAll('input, textarea, select'))
            .map((el) => el.getAttribute('name') || el.id || '')
            .filter(Boolean),
    }));
    const tables = Array.from(document.querySelectorAll('table')).slice(0, 20).map((t, i) => {
        const rows = Array.from(t.querySelectorAll('tr')).slice(0, 50).map((tr) =>
            Array.from(tr.querySelectorAll('th, td')).map((c) => (c.textContent || '').trim()));
        return { selector: t.id ? `#${t.id}` : `table:nth-of-type(${i + 1})`, rows };
    });
    const jsonLd = Array.from(document.querySelectorAll('script[type="application/ld+json"]'))
        .map((s) => s.textContent || '');
    const microdata = Array.from(document.querySelectorAll('[itemscope]')).slice(0, 50).map((el) => {
        const props = {};
        el.querySelectorAll('[itemprop]').forEach((p) => {
            props[p.getAttribute('itemprop')] = (p.getAttribute('content') || p.textContent || '').trim();
        });
        return { type: el.getAttribute('itemtype') || '', properties: props };
    });
    const rdfa = Array.from(document.querySelectorAll('[typeof]')).slice(0, 50).map((el) => {
        const props = {};
        el.querySelectorAll('[property]').forEach((p) => {
            props[p.getAttribute('property')] = (p.getAttribute('content') || p.textContent || '').trim();
        });
        return { type: el.getAttribute('typeof') || '', properties: props };
    });
    return {
        title: document.title || '',
        description: meta('description'),
        keywords: meta('keywords'),
        text: ((document.body && document.body.innerText) || '').slice(0, 200000),
        links, forms, tables, jsonLd, microdata, rdfa,
    };
}
"""


def extract_emails(text: str) -> list[str]:
    return list(dict.fromkeys(m.group(0) for m in EMAIL_RE.finditer(text or "")))


def extract_phones(text: str) -> list[str]:
    """Phone numbers in international or Japanese domestic notation."""
    found: dict[str, None] = {}
    for pattern in PHONE_PATTERNS:
        for match in pattern.finditer(text or ""):
            candidate = match.group(0).strip()
            digits = re.sub(r"\D", "", candidate)
            if MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
                found.setdefault(candidate, None)
    return list(found)


def is_contact_link(text: str, href: str) -> bool:
    return contains_any(f"{text} {href}", CONTACT_LINK_WORDS)


def _parse_json_ld(blocks: list[Any]) -> list[dict]:
    items: list[dict] = []
    for block in blocks or []:
        try:
            data = json.loads(str(block))
        except (TypeError, ValueError):
            continue
        if isinstance(data, list):
            items.extend({"format": "json-ld", "data": d} for d in data if isinstance(d, dict))
        elif isinstance(data, dict):
            items.append({"format": "json-ld", "data": data})
    return items


class WebScraper:
    """Extracts contact channels and page metadata from a loaded page."""

    def __init__(self, http_timeout: float = 5.0):
        self.http_timeout = http_timeout

    async def scrape_page(self, page: Page) -> ScrapeResult:
        try:
            raw = await page.evaluate(PAGE_DATA_SCRIPT)
        except Exception as exc:
            logger.warning("Page scrape failed: %s", exc)
            return ScrapeResult(success=False, error=str(exc))
        if not isinstance(raw, dict):
            return ScrapeResult(success=False, error="Unexpected page data")
        return ScrapeResult(success=True, data=self.parse_page_data(raw))

    @staticmethod
    def parse_page_data(raw: dict) -> ScrapedData:
        text = str(raw.get("text") or "")
        links = [
            {
                "text": str(link.get("text") or ""),
                "url": str(link.get("href") or ""),
                "is_contact": is_contact_link(str(link.get("text") or ""), str(link.get("href") or "")),
            }
            for link in raw.get("links") or []
            if isinstance(link, dict) and link.get("href")
        ]

        emails = extract_emails(text)
        for link in links:
            if link["url"].lower().startswith("mailto:"):
                address = link["url"][7:].split("?", 1)[0]
                if address and address not in emails:
                    emails.append(address)
        phones = extract_phones(text)
        for link in links:
            if link["url"].lower().startswith("tel:"):
                number = link["url"][4:]
                if number and number not in phones:
                    phones.append(number)

        forms = [f for f in raw.get("forms") or [] if isinstance(f, dict)]
        for form in forms:
            form["is_contact"] = contains_any(
                " ".join([str(form.get("action") or ""), *map(str, form.get("fields") or [])]),
                FORM_CONTACT_KEYWORDS,
            )

        tables = []
        for table in raw.get("tables") or []:
            if not isinstance(table, dict):
                continue
            rows = [r for r in table.get("rows") or [] if isinstance(r, list)]
            tables.append(
                {
                    "selector": str(table.get("selector") or "table"),
                    "rows": len(rows),
                    "columns": max((len(r) for r in rows), default=0),
                    "data": rows,
                }
            )

        structured = _parse_json_ld(raw.get("jsonLd") or [])
        for fmt in ("microdata", "rdfa"):
            for item in raw.get(fmt) or []:
                if isinstance(item, dict) and item.get("properties"):
                    structured.append({"format": fmt, "data": item})

        keywords_raw = str(raw.get("keywords") or "")
        return ScrapedData(
            emails=emails,
            phones=phones,
            contact_links=list(dict.fromkeys(l["url"] for l in links if l["is_contact"])),
            forms=forms,
            tables=tables,
            links=links,
            title=str(raw.get("title") or ""),
            description=str(raw.get("description") or ""),
            keywords=[k.strip() for k in keywords_raw.split(",") if k.strip()],
            structured_data=structured,
        )

    async def is_url_accessible(self, url: str) -> bool:
        """HEAD-check a URL; falls back to GET for servers that reject HEAD."""
        try:
            async with httpx.AsyncClient(
                timeout=self.http_timeout, follow_redirects=True, verify=False
            ) as client:
                response = await client.head(url)
                if response.status_code in (405, 501):
                    response = await client.get(url)
                return response.status_code < 400
        except httpx.HTTPError as exc:
            logger.debug("URL not accessible %s: %s", url, exc)
            return False
