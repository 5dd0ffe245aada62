"""URL and domain helpers shared by discovery and throttling."""

from __future__ import annotations

from urllib.parse import urldefrag, urljoin, urlparse

import tldextract


def normalize_website(value: str) -> str:
    """Return an absolute http(s) URL for user-supplied input such as ``example.com``."""
    raw = (value or "").strip()
    if not raw:
        return ""
    if "://" not in raw:
        raw = f"https://{raw}"
    return raw


def canonical_host(value: str) -> str:
    """
    Lowercased hostname for a URL or bare host.

    - Strips a leading "www."
    - Drops port, path, query and fragment
    """
    raw = normalize_website(value)
    if not raw:
        return ""
    host = (urlparse(raw).hostname or "").strip(".").lower()
    if host.startswith("www.") and len(host) > 4:
        host = host[4:]
    return host


def registered_domain(value: str) -> str:
    """Registrable domain (``shop.example.co.jp`` -> ``example.co.jp``), best effort."""
    host = canonical_host(value)
    if not host:
        return ""
    extracted = tldextract.extract(host)
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}".lower()
    return host


def is_valid_http_url(value: object) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def same_site(url_a: str, url_b: str) -> bool:
    return bool(url_a and url_b) and registered_domain(url_a) == registered_domain(url_b)


def strip_fragment(url: str) -> str:
    return urldefrag(url)[0]


def comparable_url(url: str) -> str:
    """Normalize a URL for equality checks (scheme/host case, trailing slash, fragment)."""
    if not url:
        return ""
    parsed = urlparse(strip_fragment(url))
    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/")
    query = f"?{parsed.query}" if parsed.query else ""
    return f"{(parsed.scheme or '').lower()}://{(parsed.netloc or '').lower()}{path}{query}"


def site_root(url: str) -> str:
    """``https://example.com/a/b?x`` -> ``https://example.com``."""
    parsed = urlparse(normalize_website(url))
    if not parsed.netloc:
        return ""
    return f"{parsed.scheme}://{parsed.netloc}"


def join_path(base_url: str, path: str) -> str:
    root = site_root(base_url)
    if not root:
        return ""
    return urljoin(root + "/", path.lstrip("/"))
