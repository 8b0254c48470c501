"""Feed engine configuration.

Read from ~/.nippo/feed.yaml, with environment overrides for the values that
differ between deployments. Unknown keys are ignored with a warning.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from nippo_feed.store.firestore import DEFAULT_API_URL
from nippo_feed.store.local import LOCAL_DB_PATH

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".nippo" / "feed.yaml"

ENV_OVERRIDES = {
    "NIPPO_FEED_PROJECT": "project_id",
    "NIPPO_FEED_API_URL": "api_url",
    "NIPPO_FEED_TIMEZONE": "timezone",
}
TOKEN_ENV = "NIPPO_FEED_ID_TOKEN"


@dataclass
class FeedConfig:
    project_id: str = ""
    api_url: str = DEFAULT_API_URL

    # pagination
    page_size: int = 20
    per_partition_cap: int = 20
    max_concurrent_fetches: int = 5
    fetch_timeout_s: float = 10.0
    include_summaries: bool = True

    # cache
    cache_ttl_ms: int = 30_000
    write_grace_ms: int = 3_000

    # poller
    poll_interval_s: float = 60.0
    poll_tolerance_ms: int = 1_000

    placeholder_name: str = "User"
    timezone: str = "UTC"
    local_db_path: Path = field(default_factory=lambda: LOCAL_DB_PATH)

    @property
    def tz(self) -> tzinfo:
        if self.timezone.upper() == "UTC":
            return timezone.utc
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.error("Unknown timezone %r, using UTC", self.timezone)
            return timezone.utc

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data["local_db_path"] = str(self.local_db_path)
        return data


def coerce_value(name: str, value: Any) -> Any:
    default = getattr(FeedConfig(), name)
    if isinstance(default, Path):
        return Path(os.path.expanduser(str(value)))
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)


def load_config(path: Path | None = None) -> FeedConfig:
    """Load config from YAML, then apply environment overrides."""
    path = path or DEFAULT_CONFIG_PATH
    values: Dict[str, Any] = {}

    if path.exists():
        try:
            loaded = yaml.safe_load(path.read_text()) or {}
            if isinstance(loaded, dict):
                values = loaded
            else:
                logger.error("Config %s is not a mapping, using defaults", path)
        except (yaml.YAMLError, OSError) as exc:
            logger.error("Could not read config %s: %s", path, exc)

    for env_name, key in ENV_OVERRIDES.items():
        if os.environ.get(env_name):
            values[key] = os.environ[env_name]

    known = {f.name for f in dataclasses.fields(FeedConfig)}
    kwargs: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in known:
            logger.warning("Ignoring unknown config key %r", key)
            continue
        try:
            kwargs[key] = coerce_value(key, value)
        except (TypeError, ValueError):
            logger.error("Invalid value for %s: %r, using default", key, value)

    return FeedConfig(**kwargs)


def save_config(config: FeedConfig, path: Path | None = None):
    path = path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(config.to_dict(), sort_keys=False))


def load_token() -> Optional[str]:
    """Bearer token for the document store, issued by the app's sign-in flow."""
    return os.environ.get(TOKEN_ENV) or None
