"""Declarative heuristic tables for page, form and CAPTCHA classification.

Scoring logic is kept as data here so it can be tuned (or overridden through
config/heuristics.yaml) without touching DOM traversal code. Keywords are
matched case-insensitively against lowercased text; Japanese entries are
matched as-is.
"""

from __future__ import annotations

from typing import Iterable, Optional

# (keyword, points). Only the first matching entry of a table is counted.
CONTACT_URL_WEIGHTS: list[tuple[str, int]] = [
    ("contact", 80),
    ("inquiry", 70),
    ("enquiry", 70),
    ("reach", 60),
    ("お問い合わせ", 85),
    ("連絡先", 80),
    ("コンタクト", 75),
]

CONTACT_TITLE_WEIGHTS: list[tuple[str, int]] = [
    ("contact", 60),
    ("inquiry", 50),
    ("お問い合わせ", 70),
    ("連絡先", 65),
]

CONTACT_INFO_MARKERS: list[str] = [
    "phone",
    "email",
    "address",
    "tel:",
    "mailto:",
    "電話",
    "メール",
    "住所",
]
CONTACT_INFO_POINTS = 30
CONTACT_PAGE_THRESHOLD = 70
MIN_CANDIDATE_CONFIDENCE = 30

PAGE_TYPE_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("about", ("about", "company", "会社概要", "私たちについて")),
    ("support", ("support", "help", "faq", "サポート", "ヘルプ")),
    ("inquiry", ("inquiry", "enquiry", "問い合わせ")),
]

# Link text / href words that mark a contact link.
CONTACT_LINK_WORDS: list[str] = [
    "contact",
    "inquiry",
    "enquiry",
    "reach",
    "get in touch",
    "お問い合わせ",
    "問い合わせ",
    "連絡先",
    "コンタクト",
]

CONTACT_PATHS: list[str] = [
    "/contact",
    "/contact-us",
    "/contactus",
    "/contact.html",
    "/get-in-touch",
    "/reach-us",
    "/inquiry",
    "/enquiry",
    "/about/contact",
    "/support/contact",
    "/help/contact",
    "/contacto",
    "/kontakt",
    "/お問い合わせ",
    "/連絡先",
    "/コンタクト",
]

# Form classification
FORM_CONTACT_KEYWORDS: list[str] = [
    "contact",
    "inquiry",
    "enquiry",
    "message",
    "feedback",
    "お問い合わせ",
    "問い合わせ",
    "連絡",
    "コンタクト",
    "ご相談",
]

FIELD_KEYWORDS: dict[str, tuple[str, ...]] = {
    "name": ("name", "姓名", "名前", "氏名", "お名前"),
    "email": ("email", "e-mail", "mail", "メール"),
    "message": ("message", "comment", "content", "body", "inquiry", "メッセージ", "コメント", "内容", "本文"),
}

FORM_SCORE_WEIGHTS: dict[str, int] = {
    "base": 30,
    "action_keyword": 30,
    "name_field": 20,
    "email_field": 20,
    "message_field": 20,
    "required_field": 10,
}

SUBMIT_SELECTORS: list[str] = [
    'input[type="submit"]',
    'button[type="submit"]',
    "button:not([type])",
]

# CAPTCHA markers: selectors present in the DOM, and substrings of iframe src.
CAPTCHA_RULES: dict[str, dict[str, list[str]]] = {
    "recaptcha": {
        "selectors": [
            ".g-recaptcha",
            "#recaptcha",
            "[data-sitekey]",
            'iframe[src*="recaptcha"]',
        ],
        "iframes": ["google.com/recaptcha", "recaptcha.net/recaptcha", "recaptcha/api2"],
    },
    "hcaptcha": {
        "selectors": [
            ".h-captcha",
            "#hcaptcha",
            'iframe[src*="hcaptcha.com"]',
            "[data-sitekey][data-hcaptcha]",
        ],
        "iframes": ["hcaptcha.com/captcha", "hcaptcha.com/1"],
    },
    "cloudflare": {
        "selectors": [
            "#cf-challenge-running",
            "#challenge-stage",
            "#cf-please-wait",
            ".cf-browser-verification",
            ".cf-turnstile",
            'iframe[src*="challenges.cloudflare.com"]',
        ],
        "iframes": ["cloudflare.com/cdn-cgi", "challenges.cloudflare.com"],
    },
}
CAPTCHA_POINTS_PER_MATCH = 25
GENERIC_CAPTCHA_CONFIDENCE = 30
GENERIC_CAPTCHA_PHRASES: list[str] = [
    "captcha",
    "i'm not a robot",
    "verify you are human",
    "are you a robot",
    "画像認証",
]

ANTIBOT_DOM_RULES: dict[str, list[str]] = {
    "cloudflare": [
        "#cf-challenge-running",
        "#challenge-stage",
        ".cf-browser-verification",
        'iframe[src*="challenges.cloudflare.com"]',
    ],
    "akamai": ['iframe[src*="akamai.com"]', ".akamai-challenge"],
    "imperva": ['iframe[src*="incapsula.com"]', ".incapsula-challenge"],
    "captcha": [".g-recaptcha", ".h-captcha", "#recaptcha", "#hcaptcha"],
}
ANTIBOT_TEXT_RULES: dict[str, list[str]] = {
    "rate_limit": ["rate limit", "too many requests", "error 429", "quota exceeded"],
    "bot_detection": ["bot detected", "automated access", "suspicious activity", "security check"],
}
ANTIBOT_POINTS_PER_GROUP = 25

# Submission outcome phrases
SUCCESS_PHRASES: list[str] = [
    "thank you for your message",
    "message sent successfully",
    "form submitted successfully",
    "your message has been sent",
    "we have received your message",
    "submission successful",
    "message received",
    "form submitted",
    "送信完了",
    "メッセージを送信しました",
    "お問い合わせありがとうございます",
    "送信が完了しました",
]

ERROR_PHRASES: list[str] = [
    "error",
    "failed",
    "invalid",
    "required",
    "missing",
    "please try again",
    "エラー",
    "失敗",
    "無効",
    "必須",
    "送信に失敗しました",
]


def first_match_weight(text: str, table: Iterable[tuple[str, int]]) -> tuple[int, Optional[str]]:
    """Points of the first table entry found in ``text`` (0 if none)."""
    haystack = (text or "").lower()
    for keyword, points in table:
        if keyword.lower() in haystack:
            return points, keyword
    return 0, None


def contains_any(text: str, keywords: Iterable[str]) -> bool:
    haystack = (text or "").lower()
    return any(keyword.lower() in haystack for keyword in keywords)


def matching_keywords(text: str, keywords: Iterable[str]) -> list[str]:
    haystack = (text or "").lower()
    return [keyword for keyword in keywords if keyword.lower() in haystack]


def clamp_confidence(value: float) -> int:
    return int(max(0, min(100, round(value))))
