from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_SERVICE_KEY_SEED = "elephant ears space cowboy octopus rodeo potato cannon pineapple"


def _flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().casefold() in {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class Settings:
    redis_url: str
    key_prefix: str
    service_private_key: str | None
    service_key_seed: str
    snapshots_enabled: bool
    coverage_enabled: bool
    lock_ttl_ms: int
    log_level: str


def load_dotenv_if_present(*, project_root: Path | None = None) -> None:
    """Load `.env` from the project root without overriding the real environment."""

    root = project_root or Path(__file__).resolve().parents[1]
    env_path = root / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)


def settings_from_env() -> Settings:
    return Settings(
        redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
        key_prefix=os.environ.get("EMULATOR_KEY_PREFIX", "emulator"),
        service_private_key=os.environ.get("EMULATOR_SERVICE_PRIVATE_KEY") or None,
        service_key_seed=os.environ.get("EMULATOR_SERVICE_KEY_SEED", DEFAULT_SERVICE_KEY_SEED),
        snapshots_enabled=_flag("EMULATOR_SNAPSHOTS", True),
        coverage_enabled=_flag("EMULATOR_COVERAGE_REPORTING", True),
        lock_ttl_ms=int(os.environ.get("EMULATOR_LOCK_TTL_MS", "5000")),
        log_level=os.environ.get("EMULATOR_LOG_LEVEL", "INFO").upper(),
    )
