"""Runtime configuration, read once from environment variables."""

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional, Self

ENV_PREFIX = "CHESS_ARBITER_"


def _seconds(env: Mapping[str, str], key: str, default: float) -> timedelta:
    raw = env.get(ENV_PREFIX + key)
    if raw is None:
        return timedelta(seconds=default)
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX + key} must be a number of seconds, got {raw!r}.") from exc
    if value <= 0:
        raise ValueError(f"{ENV_PREFIX + key} must be positive, got {raw!r}.")
    return timedelta(seconds=value)


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./chess_arbiter.db"
    open_queue_timeout: timedelta = timedelta(minutes=5)
    challenge_timeout: timedelta = timedelta(minutes=60)
    idle_timeout: timedelta = timedelta(hours=2)
    sweep_interval: timedelta = timedelta(seconds=60)
    join_link_base: str = "http://localhost:3000"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> Self:
        """Build Settings from (a copy of) os.environ. Missing keys fall back to the defaults."""
        env = os.environ if env is None else env
        return cls(
            database_url=env.get(ENV_PREFIX + "DATABASE_URL", cls.database_url),
            open_queue_timeout=_seconds(env, "OPEN_QUEUE_TIMEOUT", 300),
            challenge_timeout=_seconds(env, "CHALLENGE_TIMEOUT", 3600),
            idle_timeout=_seconds(env, "IDLE_TIMEOUT", 7200),
            sweep_interval=_seconds(env, "SWEEP_INTERVAL", 60),
            join_link_base=env.get(ENV_PREFIX + "JOIN_LINK_BASE", cls.join_link_base).rstrip("/"),
            log_level=env.get(ENV_PREFIX + "LOG_LEVEL", cls.log_level).upper(),
        )

    def join_link(self, token: str) -> str:
        return f"{self.join_link_base}/join/{token}"
