from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from dotenv import load_dotenv
from platformdirs import user_cache_dir, user_config_dir

APP_NAME = "IntuneBulkAssign"
ENV_PREFIX = "INTUNE_BULK_"
ENV_FILE_NAME = "settings.env"
JOB_DB_NAME = "assignment-jobs.db"

DEFAULT_GRAPH_SCOPES: tuple[str, ...] = (
    "https://graph.microsoft.com/DeviceManagementApps.ReadWrite.All",
    "https://graph.microsoft.com/Group.Read.All",
)

# Microsoft Graph rejects /$batch payloads with more than 20 requests.
GRAPH_BATCH_LIMIT = 20


def _config_dir() -> Path:
    path = Path(user_config_dir(APP_NAME, roaming=True))
    path.mkdir(parents=True, exist_ok=True)
    return path


def _cache_dir() -> Path:
    path = Path(user_cache_dir(APP_NAME))
    path.mkdir(parents=True, exist_ok=True)
    return path


def config_dir() -> Path:
    return _config_dir()


def cache_dir() -> Path:
    return _cache_dir()


def default_database_path() -> Path:
    """Location of the job database; the directory is created on first open."""

    return Path(user_cache_dir(APP_NAME)) / JOB_DB_NAME


def log_dir() -> Path:
    path = cache_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def _env_file_path(explicit: Path | None) -> Path:
    if explicit is not None:
        return explicit
    return _config_dir() / ENV_FILE_NAME


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Retry ceiling and exponential backoff applied to retryable job failures."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 32.0

    def backoff(self, retry_count: int, retry_after: float | None = None) -> float:
        """Return the delay before the next attempt.

        ``retry_count`` is the number of retries already consumed. A server
        supplied ``retry_after`` wins when it is larger than the computed delay.
        """

        exponential = self.base_delay * (2 ** max(0, retry_count))
        delay = min(exponential, self.max_delay)
        if retry_after is not None and retry_after > delay:
            return float(retry_after)
        return float(delay)

    def allows_retry(self, retry_count: int) -> bool:
        return retry_count < self.max_retries


@dataclass(slots=True)
class EngineSettings:
    """Tunable constants for the Graph client and the batch scheduler."""

    graph_scopes: list[str] = field(default_factory=lambda: list(DEFAULT_GRAPH_SCOPES))
    max_retries: int = 3
    base_retry_delay: float = 1.0
    max_retry_delay: float = 32.0
    max_concurrency: int = 5
    max_batch_size: int = GRAPH_BATCH_LIMIT
    request_timeout: float = 30.0
    resource_timeout: float = 120.0
    page_size: int = 100
    poll_interval: float = 0.25
    database_path: Path = field(default_factory=default_database_path)

    def __post_init__(self) -> None:
        if self.max_batch_size < 1 or self.max_batch_size > GRAPH_BATCH_LIMIT:
            raise ValueError(
                f"max_batch_size must be between 1 and {GRAPH_BATCH_LIMIT}",
            )
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.resource_timeout < self.request_timeout:
            raise ValueError("resource_timeout must not be shorter than request_timeout")

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.base_retry_delay,
            max_delay=self.max_retry_delay,
        )

    def configured_scopes(self) -> Iterable[str]:
        """Return deduplicated scopes preserving order."""

        seen = set[str]()
        for scope in self.graph_scopes:
            if scope and scope not in seen:
                seen.add(scope)
                yield scope


class SettingsManager:
    """Load and persist engine settings with environment overrides."""

    _INT_FIELDS = {
        "MAX_RETRIES": "max_retries",
        "MAX_CONCURRENCY": "max_concurrency",
        "MAX_BATCH_SIZE": "max_batch_size",
        "PAGE_SIZE": "page_size",
    }
    _FLOAT_FIELDS = {
        "BASE_RETRY_DELAY": "base_retry_delay",
        "MAX_RETRY_DELAY": "max_retry_delay",
        "REQUEST_TIMEOUT": "request_timeout",
        "RESOURCE_TIMEOUT": "resource_timeout",
        "POLL_INTERVAL": "poll_interval",
    }

    def __init__(self, env_file: Path | None = None) -> None:
        self._env_file = _env_file_path(env_file)

    @property
    def env_file(self) -> Path:
        return self._env_file

    def load(self) -> EngineSettings:
        """Load settings from environment, falling back to the persisted file."""
        load_dotenv(self._env_file, override=False)

        overrides: dict[str, object] = {}
        for name, attr in self._INT_FIELDS.items():
            raw = self._get_env(name)
            if raw is not None:
                overrides[attr] = int(raw)
        for name, attr in self._FLOAT_FIELDS.items():
            raw = self._get_env(name)
            if raw is not None:
                overrides[attr] = float(raw)

        scopes = self._get_scopes_from_env()
        if scopes:
            overrides["graph_scopes"] = scopes

        database_override = self._get_env("DATABASE_PATH")
        if database_override:
            overrides["database_path"] = Path(database_override).expanduser()

        return EngineSettings(**overrides)  # type: ignore[arg-type]

    def save(self, settings: EngineSettings) -> None:
        """Persist the tunable fields to the managed env file."""
        self._env_file.parent.mkdir(parents=True, exist_ok=True)
        content = [
            f"{ENV_PREFIX}{name}={getattr(settings, attr)}"
            for name, attr in {**self._INT_FIELDS, **self._FLOAT_FIELDS}.items()
        ]
        content.append(f"{ENV_PREFIX}SCOPES={';'.join(settings.configured_scopes())}")
        content.append(f"{ENV_PREFIX}DATABASE_PATH={settings.database_path}")
        self._env_file.write_text("\n".join(content) + "\n", encoding="utf-8")

    def _get_env(self, name: str) -> str | None:
        return os.getenv(f"{ENV_PREFIX}{name}") or None

    def _get_scopes_from_env(self) -> list[str] | None:
        raw = self._get_env("SCOPES")
        if not raw:
            return None
        scopes = [scope.strip() for scope in raw.split(";") if scope.strip()]
        return scopes or None


__all__ = [
    "DEFAULT_GRAPH_SCOPES",
    "GRAPH_BATCH_LIMIT",
    "EngineSettings",
    "RetryPolicy",
    "SettingsManager",
    "cache_dir",
    "config_dir",
    "default_database_path",
    "log_dir",
]
