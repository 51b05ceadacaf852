"""
Configuration module for the RKE1 operator.

Every setting can be overridden through an environment variable; the
dataclass defaults apply otherwise.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


@dataclass
class DatabaseConfig:
    """PostgreSQL connection settings (DB_*)."""

    host: str = "localhost"
    port: int = 5432
    database: str = "rke1_operator"
    user: str = "operator"
    password: str = field(default="", repr=False)  # Never log password
    min_pool_size: int = 5
    max_pool_size: int = 20

    @classmethod
    def from_env(cls):
        defaults = cls()
        password = os.getenv("DB_PASSWORD", "")
        if not password:
            raise ValueError(
                "DB_PASSWORD environment variable must be set. "
                "Database password cannot be empty."
            )

        return cls(
            host=os.getenv("DB_HOST", defaults.host),
            port=_env_int("DB_PORT", defaults.port),
            database=os.getenv("DB_NAME", defaults.database),
            user=os.getenv("DB_USER", defaults.user),
            password=password,
            min_pool_size=_env_int("DB_MIN_POOL_SIZE", defaults.min_pool_size),
            max_pool_size=_env_int("DB_MAX_POOL_SIZE", defaults.max_pool_size),
        )


@dataclass
class ControllerConfig:
    """Polling, requeue and retry timings of the controller, in seconds."""

    reconcile_interval: int = 10
    max_concurrent_reconciles: int = 5
    # Requeue after a create or delete was requested
    wait_interval: int = 30
    # Requeue after the remote side matched
    resync_interval: int = 300

    # Failed reconciliations retry after base * 2^retries, capped, ±jitter
    backoff_base_delay: int = 30
    backoff_max_delay: int = 3600
    backoff_jitter_factor: float = 0.1

    @classmethod
    def from_env(cls):
        defaults = cls()
        return cls(
            reconcile_interval=_env_int(
                "RECONCILE_INTERVAL", defaults.reconcile_interval
            ),
            max_concurrent_reconciles=_env_int(
                "MAX_CONCURRENT_RECONCILES", defaults.max_concurrent_reconciles
            ),
            wait_interval=_env_int("WAIT_INTERVAL", defaults.wait_interval),
            resync_interval=_env_int("RESYNC_INTERVAL", defaults.resync_interval),
            backoff_base_delay=_env_int(
                "BACKOFF_BASE_DELAY", defaults.backoff_base_delay
            ),
            backoff_max_delay=_env_int("BACKOFF_MAX_DELAY", defaults.backoff_max_delay),
            backoff_jitter_factor=_env_float(
                "BACKOFF_JITTER_FACTOR", defaults.backoff_jitter_factor
            ),
        )


@dataclass
class EngineConfig:
    """Settings shared by the reconcilers."""

    # Value of the ManagedBy tag on VPCs and subnets referenced by name
    managed_by_tag: str = "crossplane"
    default_kubeconfig_namespace: str = "default"

    @classmethod
    def from_env(cls):
        defaults = cls()
        return cls(
            managed_by_tag=os.getenv("MANAGED_BY_TAG", defaults.managed_by_tag),
            default_kubeconfig_namespace=os.getenv(
                "DEFAULT_KUBECONFIG_NAMESPACE", defaults.default_kubeconfig_namespace
            ),
        )


@dataclass
class APIConfig:
    """HTTP API settings; LOG_LEVEL also sets the process log level."""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        defaults = cls()
        return cls(
            enabled=_env_bool("API_ENABLED", defaults.enabled),
            host=os.getenv("API_HOST", defaults.host),
            port=_env_int("API_PORT", defaults.port),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        )


@dataclass
class Config:
    """Main configuration object."""

    database: DatabaseConfig
    controller: ControllerConfig
    engine: EngineConfig
    api: APIConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            controller=ControllerConfig.from_env(),
            engine=EngineConfig.from_env(),
            api=APIConfig.from_env(),
        )

    @classmethod
    def default(cls):
        return cls(
            database=DatabaseConfig(),
            controller=ControllerConfig(),
            engine=EngineConfig(),
            api=APIConfig(),
        )


# Lazily loaded process configuration
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration from the environment once."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Forget the loaded configuration so the next get_config() reloads it."""
    global config
    config = None
