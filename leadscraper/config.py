"""
Settings for the lead scraper.

Values come from three layers, highest priority first:
  1. LEADSCRAPER_* environment variables
  2. settings.json in the working directory, or LEADSCRAPER_SETTINGS_FILE
     (written by save_settings)
  3. the defaults below

Every timeout, delay and threshold the pipeline uses lives on ScrapeSettings.
Google Maps markup is unversioned, so none of these are hard-coded elsewhere.
"""

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path

ENV_PREFIX = 'LEADSCRAPER_'

USER_AGENT = ('Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
              '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36')


def settings_path(environ=None) -> Path:
    """LEADSCRAPER_SETTINGS_FILE, else settings.json in the working directory."""
    environ = os.environ if environ is None else environ
    return Path(environ.get(ENV_PREFIX + 'SETTINGS_FILE') or Path.cwd() / 'settings.json')


def load_settings(path: Path = None) -> dict:
    path = Path(path) if path else settings_path()
    if path.exists():
        with open(path, 'r') as f:
            return json.load(f)
    return {}


def save_settings(data: dict, path: Path = None):
    path = Path(path) if path else settings_path()
    existing = load_settings(path)
    existing.update(data)
    with open(path, 'w') as f:
        json.dump(existing, f, indent=2)


@dataclass(frozen=True)
class ScrapeSettings:
    # Browser
    headless: bool = True
    user_agent: str = USER_AGENT
    viewport_width: int = 1920
    viewport_height: int = 1080

    # Navigation timeouts (ms)
    search_timeout_ms: int = 30000
    detail_timeout_ms: int = 15000
    website_timeout_ms: int = 10000
    contact_timeout_ms: int = 8000
    consent_probe_timeout_ms: int = 2000
    selector_timeout_ms: int = 3000
    field_timeout_ms: int = 2000

    # Settle delays (seconds)
    search_settle: float = 3.0
    consent_settle: float = 5.0
    scroll_settle: float = 2.0
    detail_settle: float = 2.0
    website_settle: float = 1.0
    item_delay: float = 1.0

    # Loading / extraction policy
    default_target: int = 20
    max_target: int = 50
    max_scroll_rounds: int = 10
    stall_threshold: int = 2
    search_retries: int = 1
    max_consecutive_failures: int = 10
    max_emails: int = 5

    # Jobs and credits
    job_cost: int = 10
    starting_credits: int = 0
    retention_seconds: int = 3600
    sweep_interval: float = 300.0

    # External services
    ledger_url: str = ''
    debug_dir: str = ''

    # Web UI
    host: str = '127.0.0.1'
    port: int = 5500
    log_debug: bool = False

    def with_overrides(self, **overrides) -> 'ScrapeSettings':
        return replace(self, **overrides)


def _coerce(raw, default):
    if isinstance(default, bool):
        if isinstance(raw, str):
            return raw.strip().lower() in ('1', 'true', 'yes', 'on')
        return bool(raw)
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return str(raw)


def get_settings(path: Path = None, environ=None) -> ScrapeSettings:
    """Build settings from env over settings.json over defaults.

    Unparseable values fall back to the default instead of failing startup.
    """
    environ = os.environ if environ is None else environ
    file_values = load_settings(path)
    base = ScrapeSettings()
    values = {}
    for f in fields(ScrapeSettings):
        default = getattr(base, f.name)
        raw = environ.get(ENV_PREFIX + f.name.upper())
        if raw is None:
            raw = file_values.get(f.name)
        if raw is None:
            continue
        try:
            values[f.name] = _coerce(raw, default)
        except (TypeError, ValueError):
            continue
    return replace(base, **values)
