"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from .errors import ConfigurationError

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"
LOGS_DIR = PROJECT_ROOT / "logs"
DEFAULT_DB_PATH = DATA_DIR / "agentmesh.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        DATA_DIR.mkdir(parents=True, exist_ok=True)
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(name, f"expected integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigurationError(name, f"must be >= {minimum}, got {value}")
    return value


def _optional_int_env(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    return _int_env(name, 0)


@dataclass(frozen=True)
class MeshSettings:
    """Runtime tunables for the coordination core.

    Durations are in milliseconds, matching the workflow definition format.
    """

    history_size: int = 1000
    validation_cache_size: int = 1024
    max_concurrency: int = 4
    node_timeout_ms: int = 30_000
    consensus_timeout_ms: int = 5_000
    context_ttl_ms: int | None = None
    sweep_interval_ms: int = 1_000

    @classmethod
    def from_env(cls) -> "MeshSettings":
        """Build settings from AGENTMESH_* environment variables."""
        return cls(
            history_size=_int_env("AGENTMESH_HISTORY_SIZE", 1000, minimum=1),
            validation_cache_size=_int_env(
                "AGENTMESH_VALIDATION_CACHE_SIZE", 1024, minimum=1
            ),
            max_concurrency=_int_env("AGENTMESH_MAX_CONCURRENCY", 4, minimum=1),
            node_timeout_ms=_int_env("AGENTMESH_NODE_TIMEOUT_MS", 30_000, minimum=1),
            consensus_timeout_ms=_int_env(
                "AGENTMESH_CONSENSUS_TIMEOUT_MS", 5_000, minimum=1
            ),
            context_ttl_ms=_optional_int_env("AGENTMESH_CONTEXT_TTL_MS"),
            sweep_interval_ms=_int_env(
                "AGENTMESH_SWEEP_INTERVAL_MS", 1_000, minimum=1
            ),
        )
