"""Tests for environment and heuristics configuration."""

from pathlib import Path

import pytest

from contactpilot.analyzer.rules import CONTACT_PATHS, ERROR_PHRASES
from contactpilot.automation.profiles import build_contact_data, select_profile
from contactpilot.config import Config, load_config, validate_config

HEURISTICS = """
discovery:
  contact_paths: [/toiawase, /contact]
  url_keywords:
    - keyword: toiawase
      points: 90
    - keyword: broken
      points: lots
submission:
  success_phrases: [ご予約ありがとうございます]
sites:
  - name: salon
    domains: [salon.example.jp]
    contact_paths: [/reserve/contact]
    form_data:
      ご用件: "{business_name}様へのお問い合わせ"
      broken: "{unknown}"
    field_aliases:
      message: [ご相談内容]
  - name: no-domains
"""


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ("MAX_BROWSER_INSTANCES", "RATE_LIMIT_DELAY", "FILL_DELAY", "BROWSER_HEADLESS", "NAVIGATION_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SCREENSHOT_DIR", str(tmp_path / "shots"))
    return monkeypatch


def test_defaults_without_heuristics_file(clean_env, tmp_path):
    config = load_config(tmp_path)

    assert config.max_instances == 3
    assert config.rate_limit_delay == 2.0
    assert config.fill_delay == pytest.approx(0.1)
    assert config.contact_paths == CONTACT_PATHS
    assert config.error_phrases == ERROR_PHRASES
    assert [p.name for p in config.site_profiles] == ["quinque"]
    assert config.screenshot_dir.exists()
    assert validate_config(config) == []


def test_env_overrides(clean_env, tmp_path):
    clean_env.setenv("MAX_BROWSER_INSTANCES", "5")
    clean_env.setenv("RATE_LIMIT_DELAY", "500")
    clean_env.setenv("BROWSER_HEADLESS", "false")
    clean_env.setenv("NAVIGATION_TIMEOUT", "not-a-number")

    config = load_config(tmp_path)

    assert config.max_instances == 5
    assert config.rate_limit_delay == 0.5
    assert config.headless is False
    assert config.navigation_timeout == 30.0


def test_heuristics_yaml_overrides_tables(clean_env, tmp_path):
    (tmp_path / "heuristics.yaml").write_text(HEURISTICS, encoding="utf-8")

    config = load_config(tmp_path)

    assert config.contact_paths == ["/toiawase", "/contact"]
    assert config.url_keyword_weights == [("toiawase", 90)]
    assert config.success_phrases == ["ご予約ありがとうございます"]
    assert config.error_phrases == ERROR_PHRASES
    assert [p.name for p in config.site_profiles] == ["quinque", "salon"]

    profile = select_profile("https://www.salon.example.jp/menu", config.site_profiles)
    assert profile.name == "salon"
    assert profile.extra_contact_paths == ("/reserve/contact",)
    data = build_contact_data("Hanako", "https://salon.example.jp", profile)
    assert data["ご用件"] == "Hanako様へのお問い合わせ"
    assert data["broken"] == "{unknown}"
    assert data["email"] == "test@example.com"


def test_unparseable_heuristics_fall_back(clean_env, tmp_path):
    (tmp_path / "heuristics.yaml").write_text("discovery: [unclosed", encoding="utf-8")

    config = load_config(tmp_path)

    assert config.contact_paths == CONTACT_PATHS


def test_custom_form_data_wins_outright():
    data = build_contact_data("ACME", "https://example.com", custom={"email": "owner@acme.jp"})

    assert data == {"email": "owner@acme.jp"}


def test_validate_config_reports_bad_limits(tmp_path):
    config = Config(max_instances=0, screenshot_quality=150, screenshot_dir=Path(tmp_path))

    errors = validate_config(config)

    assert "MAX_BROWSER_INSTANCES must be at least 1" in errors
    assert "SCREENSHOT_QUALITY must be between 1 and 100" in errors
