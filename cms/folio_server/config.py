"""
Configuration management for Folio Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Time budgets are always base constant x per-operation coefficient
    - The storage backend is chosen once, at startup

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep coefficient defaults stable, content teams tune TIMEOUT_CONSTANT_MS only
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class StorageBackend(Enum):
    """Supported storage engines."""

    MEMORY = "memory"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class StorageConfig:
    """Storage engine configuration.

    Attributes:
        backend: Which storage engine to use
        data_dir: Directory for the SQLite database
        filename: SQLite database file name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    backend: StorageBackend = StorageBackend.MEMORY
    data_dir: str = "/var/lib/folio"
    filename: str = "folio.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables.

        Raises:
            ValueError: If STORAGE_BACKEND names an unknown engine
        """
        backend_str = os.getenv("STORAGE_BACKEND", "memory").lower()
        try:
            backend = StorageBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORAGE_BACKEND '{backend_str}'. Must be one of: memory, sqlite"
            ) from None

        return cls(
            backend=backend,
            data_dir=os.getenv("DATA_DIR", "/var/lib/folio"),
            filename=os.getenv("SQLITE_FILENAME", "folio.db"),
            wal_mode=_env_flag("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class TimeoutConfig:
    """Operation time budgets.

    Every budget is constant_ms multiplied by a per-operation coefficient.

    Attributes:
        constant_ms: Base time constant
        get_coefficient: Multiplier for render hooks on reads
        put_coefficient: Multiplier for save hooks on writes
        publish_coefficient: Multiplier for a whole page publish
    """

    constant_ms: int = 4000
    get_coefficient: int = 2
    put_coefficient: int = 5
    publish_coefficient: int = 5

    @property
    def get_budget_ms(self) -> int:
        return self.constant_ms * self.get_coefficient

    @property
    def put_budget_ms(self) -> int:
        return self.constant_ms * self.put_coefficient

    @property
    def publish_budget_ms(self) -> int:
        return self.constant_ms * self.publish_coefficient

    @classmethod
    def from_env(cls) -> TimeoutConfig:
        """Load configuration from environment variables."""
        return cls(
            constant_ms=int(os.getenv("TIMEOUT_CONSTANT_MS", "4000")),
            get_coefficient=int(os.getenv("TIMEOUT_GET_COEFFICIENT", "2")),
            put_coefficient=int(os.getenv("TIMEOUT_PUT_COEFFICIENT", "5")),
            publish_coefficient=int(os.getenv("TIMEOUT_PUBLISH_COEFFICIENT", "5")),
        )


@dataclass(frozen=True)
class ComposeConfig:
    """Read-side composition configuration.

    Attributes:
        detect_cycles: Fail fast when a reference chain revisits an address
    """

    detect_cycles: bool = True

    @classmethod
    def from_env(cls) -> ComposeConfig:
        """Load configuration from environment variables."""
        return cls(detect_cycles=_env_flag("COMPOSE_DETECT_CYCLES", "true"))


@dataclass(frozen=True)
class ScheduleConfig:
    """Scheduled publishing configuration.

    Attributes:
        enabled: Whether the schedule loop runs
        interval_seconds: Base interval between scans
        jitter_seconds: Upper bound of random delay added to each interval
    """

    enabled: bool = True
    interval_seconds: float = 50.0
    jitter_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> ScheduleConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_flag("SCHEDULE_ENABLED", "true"),
            interval_seconds=float(os.getenv("SCHEDULE_INTERVAL_SECONDS", "50")),
            jitter_seconds=float(os.getenv("SCHEDULE_JITTER_SECONDS", "10")),
        )


@dataclass(frozen=True)
class NotificationConfig:
    """Outbound webhook configuration.

    Attributes:
        webhook_timeout_seconds: Per-request timeout for webhook POSTs
    """

    webhook_timeout_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> NotificationConfig:
        """Load configuration from environment variables."""
        return cls(
            webhook_timeout_seconds=float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "5")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Observability and logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    This aggregates all configuration sections and provides validation.

    Attributes:
        sites: Site specs, "slug=host[/path]" (from SITES, comma separated)
        storage: Storage engine configuration
        timeouts: Operation time budgets
        compose: Composition configuration
        schedule: Scheduled publishing configuration
        notifications: Webhook configuration
        observability: Observability configuration
    """

    sites: tuple[str, ...] = ()
    storage: StorageConfig = field(default_factory=StorageConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    compose: ComposeConfig = field(default_factory=ComposeConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        sites = tuple(s.strip() for s in os.getenv("SITES", "").split(",") if s.strip())

        config = cls(
            sites=sites,
            storage=StorageConfig.from_env(),
            timeouts=TimeoutConfig.from_env(),
            compose=ComposeConfig.from_env(),
            schedule=ScheduleConfig.from_env(),
            notifications=NotificationConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.timeouts.constant_ms <= 0:
            raise ValueError("TIMEOUT_CONSTANT_MS must be positive")
        for name in ("get_coefficient", "put_coefficient", "publish_coefficient"):
            if getattr(self.timeouts, name) <= 0:
                raise ValueError(f"TIMEOUT_{name.upper()} must be positive")

        if self.schedule.interval_seconds <= 0:
            raise ValueError("SCHEDULE_INTERVAL_SECONDS must be positive")
        if self.schedule.jitter_seconds < 0:
            raise ValueError("SCHEDULE_JITTER_SECONDS cannot be negative")

        for spec in self.sites:
            slug, sep, host = spec.partition("=")
            if not sep or not slug or not host:
                raise ValueError(f"Invalid SITES entry '{spec}'. Expected slug=host[/path]")

        if self.storage.backend == StorageBackend.SQLITE and not os.path.exists(
            self.storage.data_dir
        ):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration summary."""
        logger.info(
            "Server configuration loaded",
            extra={
                "storage_backend": self.storage.backend.value,
                "data_dir": self.storage.data_dir
                if self.storage.backend == StorageBackend.SQLITE
                else None,
                "sites": list(self.sites),
                "timeout_constant_ms": self.timeouts.constant_ms,
                "detect_cycles": self.compose.detect_cycles,
                "schedule_enabled": self.schedule.enabled,
                "log_level": self.observability.log_level,
            },
        )
