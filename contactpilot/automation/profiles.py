"""Site profiles: per-site adjustments to the generic contact pipeline.

A profile never replaces a pipeline stage; it only feeds extra data into the
stages that already exist (entry URL, candidate paths, form data, field
aliases). Sites without a profile run with ``GENERIC_PROFILE``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..utils.domains import registered_domain


@dataclass(frozen=True)
class SiteProfile:
    name: str
    domains: tuple[str, ...] = ()
    contact_url: Optional[str] = None
    extra_contact_paths: tuple[str, ...] = ()
    # Values may use {business_name}, {first_name}, {last_name}, {website}.
    extra_form_data: dict[str, str] = field(default_factory=dict)
    # data key -> extra field names/labels it may be written into
    field_aliases: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def matches(self, website: str) -> bool:
        domain = registered_domain(website)
        return bool(domain) and any(registered_domain(d) == domain for d in self.domains)


GENERIC_PROFILE = SiteProfile(name="generic")

DEFAULT_SITE_PROFILES: list[SiteProfile] = [
    SiteProfile(
        name="quinque",
        domains=("quin-que.net",),
        contact_url="https://quin-que.net/contact/",
        extra_form_data={
            "姓": "{first_name}",
            "名": "{last_name}",
            "first_name": "{first_name}",
            "last_name": "{last_name}",
            "E-mail": "{email}",
            "TEL": "{phone}",
            "tel": "{phone}",
            "URL": "{website}",
            "ホームページ": "{website}",
            "タイトル": "お問い合わせ",
        },
        field_aliases={
            "message": ("お問い合わせ内容", "ご用件"),
            "company": ("貴社名", "御社名"),
        },
    ),
]


def select_profile(website: str, profiles: Iterable[SiteProfile]) -> SiteProfile:
    for profile in profiles:
        if profile.matches(website):
            return profile
    return GENERIC_PROFILE


DEFAULT_SENDER = {
    "first_name": "Test",
    "last_name": "User",
    "email": "test@example.com",
    "phone": "+81-3-1234-5678",
}
DEFAULT_MESSAGE = "Hello, I'm interested in your services. Please contact me for more information."


def default_contact_data(business_name: str) -> dict[str, str]:
    """Bilingual form data keyed by common field names and Japanese labels."""
    sender = f"{DEFAULT_SENDER['first_name']} {DEFAULT_SENDER['last_name']} from {business_name}"
    subject = f"Inquiry from {business_name}"
    return {
        "name": sender,
        "email": DEFAULT_SENDER["email"],
        "phone": DEFAULT_SENDER["phone"],
        "subject": subject,
        "message": DEFAULT_MESSAGE,
        "company": business_name,
        "お名前": sender,
        "メールアドレス": DEFAULT_SENDER["email"],
        "電話番号": DEFAULT_SENDER["phone"],
        "件名": subject,
        "メッセージ": DEFAULT_MESSAGE,
        "会社名": business_name,
    }


def build_contact_data(
    business_name: str,
    website: str,
    profile: SiteProfile = GENERIC_PROFILE,
    custom: Optional[dict[str, str]] = None,
) -> dict[str, str]:
    """Custom data wins outright; otherwise defaults plus the profile's extras."""
    if custom:
        return dict(custom)
    data = default_contact_data(business_name)
    values = {**DEFAULT_SENDER, "business_name": business_name, "website": website}
    for key, template in profile.extra_form_data.items():
        try:
            data[key] = template.format(**values)
        except (KeyError, IndexError, ValueError):
            data[key] = template
    return data
