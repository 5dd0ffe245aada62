"""Configuration management for contactpilot."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from .analyzer.rules import (
    CONTACT_PATHS,
    CONTACT_TITLE_WEIGHTS,
    CONTACT_URL_WEIGHTS,
    ERROR_PHRASES,
    SUCCESS_PHRASES,
)
from .automation.profiles import SiteProfile, DEFAULT_SITE_PROFILES

logger = logging.getLogger(__name__)

DEFAULT_BROWSER_ARGS: list[str] = [
    "--disable-dev-shm-usage",
    "--disable-gpu",
]


@dataclass
class Config:
    """Application configuration loaded from environment."""

    # Browser pool
    headless: bool = True
    disable_sandbox: bool = False
    max_instances: int = 3
    max_tabs_per_instance: int = 10
    idle_timeout: float = 30 * 60
    cleanup_interval: float = 5 * 60
    viewport_width: int = 1366
    viewport_height: int = 768
    user_agent: str = ""  # empty = rotate through browser.constants.USER_AGENTS
    browser_args: list[str] = field(default_factory=lambda: list(DEFAULT_BROWSER_ARGS))

    # Timeouts (seconds)
    navigation_timeout: float = 30.0
    field_timeout: float = 5.0
    command_timeout: float = 10.0
    settle_delay: float = 2.0
    post_submit_wait: float = 5.0
    request_timeout: float = 120.0

    # Rate limiting
    rate_limit_delay: float = 2.0
    max_requests_per_minute: int = 30

    # Form filling
    fill_delay: float = 0.1  # per keystroke
    submit_delay: float = 2.0
    max_retries: int = 3

    # CAPTCHA
    captcha_solving_enabled: bool = True
    captcha_grace_period: float = 3.0
    captcha_manual_wait: float = 0.0  # >0 waits for a human via remote control

    # Screenshots
    screenshot_dir: Path = field(default_factory=lambda: Path("./data/screenshots"))
    max_storage_mb: int = 100
    max_screenshots: int = 1000
    screenshot_compression: bool = True
    screenshot_quality: int = 80
    screenshot_expiry_hours: float = 24.0

    # Remote control server
    remote_enabled: bool = True
    remote_host: str = "127.0.0.1"
    remote_port: int = 8765
    session_ttl: float = 60 * 60
    job_ttl: float = 24 * 60 * 60

    # Health server
    health_host: str = "0.0.0.0"
    health_port: int = 8081
    health_enabled: bool = True

    config_dir: Path = field(default_factory=lambda: Path("./config"))

    # Heuristics (override via config/heuristics.yaml)
    contact_paths: list[str] = field(default_factory=lambda: list(CONTACT_PATHS))
    url_keyword_weights: list[tuple[str, int]] = field(
        default_factory=lambda: list(CONTACT_URL_WEIGHTS)
    )
    title_keyword_weights: list[tuple[str, int]] = field(
        default_factory=lambda: list(CONTACT_TITLE_WEIGHTS)
    )
    success_phrases: list[str] = field(default_factory=lambda: list(SUCCESS_PHRASES))
    error_phrases: list[str] = field(default_factory=lambda: list(ERROR_PHRASES))
    site_profiles: list[SiteProfile] = field(default_factory=lambda: list(DEFAULT_SITE_PROFILES))

    def __post_init__(self):
        self.screenshot_dir = Path(self.screenshot_dir)
        self.config_dir = Path(self.config_dir)
        self.screenshot_dir.mkdir(parents=True, exist_ok=True)

    @property
    def viewport(self) -> dict[str, int]:
        return {"width": self.viewport_width, "height": self.viewport_height}

    @property
    def max_storage_bytes(self) -> int:
        return self.max_storage_mb * 1024 * 1024


def _load_heuristics(config_dir: Path) -> dict:
    """Load heuristic overrides from config/heuristics.yaml (optional)."""
    path = Path(config_dir or ".") / "heuristics.yaml"
    if not path.exists():
        return {}

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except Exception as exc:
        logger.warning("Failed to parse heuristics.yaml: %s", exc)
        return {}
    if not isinstance(data, dict):
        return {}

    def _coerce_keyword_weights(raw, default):
        items: list[tuple[str, int]] = []
        for entry in raw or []:
            if not isinstance(entry, dict):
                continue
            keyword = str(entry.get("keyword") or "").strip()
            try:
                points = int(entry.get("points"))
            except Exception:
                continue
            if keyword:
                items.append((keyword, points))
        return items or default

    def _coerce_strings(raw, default):
        items = [str(item).strip() for item in raw or [] if str(item).strip()]
        return items or default

    def _coerce_site_profiles(raw):
        profiles: list[SiteProfile] = []
        for entry in raw or []:
            if not isinstance(entry, dict):
                continue
            name = str(entry.get("name") or "").strip()
            domains = [str(d).strip().lower() for d in entry.get("domains") or [] if str(d).strip()]
            if not name or not domains:
                continue
            aliases = entry.get("field_aliases") or {}
            profiles.append(
                SiteProfile(
                    name=name,
                    domains=tuple(domains),
                    contact_url=str(entry.get("contact_url") or "").strip() or None,
                    extra_contact_paths=tuple(
                        str(p).strip() for p in entry.get("contact_paths") or [] if str(p).strip()
                    ),
                    extra_form_data={
                        str(k): str(v) for k, v in (entry.get("form_data") or {}).items()
                    },
                    field_aliases={
                        str(k): tuple(str(a) for a in (v or []))
                        for k, v in aliases.items()
                        if isinstance(v, list)
                    },
                )
            )
        return profiles

    discovery_cfg = data.get("discovery") or {}
    submission_cfg = data.get("submission") or {}

    return {
        "contact_paths": _coerce_strings(discovery_cfg.get("contact_paths"), list(CONTACT_PATHS)),
        "url_keyword_weights": _coerce_keyword_weights(
            discovery_cfg.get("url_keywords"), list(CONTACT_URL_WEIGHTS)
        ),
        "title_keyword_weights": _coerce_keyword_weights(
            discovery_cfg.get("title_keywords"), list(CONTACT_TITLE_WEIGHTS)
        ),
        "success_phrases": _coerce_strings(submission_cfg.get("success_phrases"), list(SUCCESS_PHRASES)),
        "error_phrases": _coerce_strings(submission_cfg.get("error_phrases"), list(ERROR_PHRASES)),
        "site_profiles": _coerce_site_profiles(data.get("sites")),
    }


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").strip().lower() in ("1", "true", "yes")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw.strip() else default
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", name, raw)
        return default


def load_config(config_dir: Optional[Path] = None) -> Config:
    """Load configuration from environment variables."""
    load_dotenv()

    config_dir = Path(config_dir or os.getenv("CONFIG_DIR", "./config"))
    heuristics = _load_heuristics(config_dir)

    # Rate limit delay is expressed in milliseconds in the environment.
    rate_limit_delay = _env_float("RATE_LIMIT_DELAY", 2000.0) / 1000.0

    browser_args = list(DEFAULT_BROWSER_ARGS)
    extra_args = os.getenv("BROWSER_ARGS", "")
    if extra_args.strip():
        browser_args.extend(a.strip() for a in extra_args.split(",") if a.strip())

    site_profiles = list(DEFAULT_SITE_PROFILES)
    site_profiles.extend(heuristics.get("site_profiles") or [])

    return Config(
        headless=_env_bool("BROWSER_HEADLESS", True),
        disable_sandbox=os.getenv("CONTACTPILOT_DISABLE_CHROMIUM_SANDBOX") == "1",
        max_instances=int(os.getenv("MAX_BROWSER_INSTANCES", "3")),
        max_tabs_per_instance=int(os.getenv("MAX_TABS_PER_INSTANCE", "10")),
        idle_timeout=_env_float("BROWSER_IDLE_TIMEOUT", 30 * 60),
        cleanup_interval=_env_float("BROWSER_CLEANUP_INTERVAL", 5 * 60),
        viewport_width=int(os.getenv("VIEWPORT_WIDTH", "1366")),
        viewport_height=int(os.getenv("VIEWPORT_HEIGHT", "768")),
        user_agent=os.getenv("BROWSER_USER_AGENT", ""),
        browser_args=browser_args,
        navigation_timeout=_env_float("NAVIGATION_TIMEOUT", 30.0),
        field_timeout=_env_float("FIELD_TIMEOUT", 5.0),
        command_timeout=_env_float("COMMAND_TIMEOUT", 10.0),
        settle_delay=_env_float("SETTLE_DELAY", 2.0),
        post_submit_wait=_env_float("POST_SUBMIT_WAIT", 5.0),
        request_timeout=_env_float("AUTOMATION_TIMEOUT", 120.0),
        rate_limit_delay=rate_limit_delay,
        max_requests_per_minute=int(os.getenv("MAX_REQUESTS_PER_MINUTE", "30")),
        fill_delay=_env_float("FILL_DELAY", 100.0) / 1000.0,
        submit_delay=_env_float("SUBMIT_DELAY", 2000.0) / 1000.0,
        max_retries=int(os.getenv("MAX_RETRIES", "3")),
        captcha_solving_enabled=_env_bool("CAPTCHA_SOLVING_ENABLED", True),
        captcha_grace_period=_env_float("CAPTCHA_GRACE_PERIOD", 3.0),
        captcha_manual_wait=_env_float("CAPTCHA_MANUAL_WAIT", 0.0),
        screenshot_dir=Path(os.getenv("SCREENSHOT_DIR", "./data/screenshots")),
        max_storage_mb=int(os.getenv("SCREENSHOT_MAX_STORAGE_MB", "100")),
        max_screenshots=int(os.getenv("SCREENSHOT_MAX_COUNT", "1000")),
        screenshot_compression=_env_bool("SCREENSHOT_COMPRESSION", True),
        screenshot_quality=int(os.getenv("SCREENSHOT_QUALITY", "80")),
        screenshot_expiry_hours=_env_float("SCREENSHOT_EXPIRY_HOURS", 24.0),
        remote_enabled=_env_bool("REMOTE_ENABLED", True),
        remote_host=os.getenv("REMOTE_HOST", "127.0.0.1"),
        remote_port=int(os.getenv("REMOTE_PORT", "8765")),
        session_ttl=_env_float("SESSION_TTL", 60 * 60),
        job_ttl=_env_float("JOB_TTL", 24 * 60 * 60),
        health_host=os.getenv("HEALTH_HOST", "0.0.0.0"),
        health_port=int(os.getenv("HEALTH_PORT", "8081")),
        health_enabled=_env_bool("HEALTH_ENABLED", True),
        config_dir=config_dir,
        contact_paths=heuristics.get("contact_paths", list(CONTACT_PATHS)),
        url_keyword_weights=heuristics.get("url_keyword_weights", list(CONTACT_URL_WEIGHTS)),
        title_keyword_weights=heuristics.get("title_keyword_weights", list(CONTACT_TITLE_WEIGHTS)),
        success_phrases=heuristics.get("success_phrases", list(SUCCESS_PHRASES)),
        error_phrases=heuristics.get("error_phrases", list(ERROR_PHRASES)),
        site_profiles=site_profiles,
    )


def validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of error messages."""
    errors: list[str] = []
    if config.max_instances < 1:
        errors.append("MAX_BROWSER_INSTANCES must be at least 1")
    if config.max_tabs_per_instance < 1:
        errors.append("MAX_TABS_PER_INSTANCE must be at least 1")
    if config.max_requests_per_minute < 1:
        errors.append("MAX_REQUESTS_PER_MINUTE must be at least 1")
    if config.navigation_timeout <= 0:
        errors.append("NAVIGATION_TIMEOUT must be positive")
    if config.max_screenshots < 1 or config.max_storage_mb < 1:
        errors.append("Screenshot storage limits must be positive")
    if not 1 <= config.screenshot_quality <= 100:
        errors.append("SCREENSHOT_QUALITY must be between 1 and 100")
    if config.remote_enabled and config.remote_host not in ("127.0.0.1", "localhost", "::1"):
        logger.warning("Remote control listening on non-loopback host %s", config.remote_host)
    return errors
