from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


def _env_list(name: str, aliases: tuple[str, ...] = ()) -> tuple[str, ...]:
    raw = (_env_lookup(name, aliases) or "").strip()
    if not raw:
        return ()
    return tuple(chunk.strip() for chunk in raw.split(",") if chunk.strip())


def _clean_token(value: str) -> str:
    cleaned = value.strip()
    if (cleaned.startswith('"') and cleaned.endswith('"')) or (
        cleaned.startswith("'") and cleaned.endswith("'")
    ):
        cleaned = cleaned[1:-1].strip()
    return cleaned


def _clean_host(value: str) -> str:
    cleaned = value.strip().rstrip("/")
    if cleaned and "://" not in cleaned:
        cleaned = f"https://{cleaned}"
    return cleaned


def _default_memory_path(memory_dir: str, environment: str) -> Path:
    filename = "test.memory.db" if environment == "test" else "memory.db"
    return Path(memory_dir).expanduser() / filename


@dataclass(slots=True)
class Settings:
    misskey_host: str
    misskey_token: str
    misskey_timeout_seconds: int

    environment: str
    sqlite_path: Path
    modules: tuple[str, ...]

    default_reaction: str
    renote_reaction: str
    reply_delay_seconds: float
    reaction_affinity_increment: float

    timer_sweep_seconds: float
    heartbeat_seconds: float
    account_fetch_attempts: int
    stream_reconnect_max_seconds: float

    @classmethod
    def from_env(cls) -> "Settings":
        environment = _env_str("AIRA_ENV", "production").lower()
        memory_dir = _env_str("AIRA_MEMORY_DIR", ".")
        explicit_path = _env_lookup("AIRA_MEMORY_PATH", aliases=("SQLITE_PATH",))
        if explicit_path and explicit_path.strip():
            sqlite_path = Path(explicit_path.strip()).expanduser()
        else:
            sqlite_path = _default_memory_path(memory_dir, environment)
        return cls(
            misskey_host=_clean_host(_env_lookup("MISSKEY_HOST") or ""),
            misskey_token=_clean_token(_env_lookup("MISSKEY_TOKEN", aliases=("MISSKEY_I",)) or ""),
            misskey_timeout_seconds=_env_int("MISSKEY_TIMEOUT_SECONDS", 30),
            environment=environment,
            sqlite_path=sqlite_path,
            modules=_env_list("AIRA_MODULES"),
            default_reaction=_env_str("AIRA_DEFAULT_REACTION", "love"),
            renote_reaction=_env_str("AIRA_RENOTE_REACTION", "love"),
            reply_delay_seconds=_env_float("AIRA_REPLY_DELAY_SECONDS", 1.0),
            reaction_affinity_increment=_env_float("AIRA_REACTION_AFFINITY", 0.1),
            timer_sweep_seconds=_env_float("AIRA_TIMER_SWEEP_SECONDS", 1.0),
            heartbeat_seconds=_env_float("AIRA_HEARTBEAT_SECONDS", 10.0),
            account_fetch_attempts=_env_int("AIRA_ACCOUNT_FETCH_ATTEMPTS", 3),
            stream_reconnect_max_seconds=_env_float("AIRA_STREAM_RECONNECT_MAX_SECONDS", 60.0),
        )

    def validate(self) -> None:
        if not self.misskey_host:
            raise ValueError("MISSKEY_HOST is required")
        if not self.misskey_token:
            raise ValueError("MISSKEY_TOKEN is required")
        if self.misskey_token == "put_your_misskey_token_here":
            raise ValueError("MISSKEY_TOKEN is still placeholder")
        if self.misskey_timeout_seconds < 5:
            raise ValueError("MISSKEY_TIMEOUT_SECONDS must be >= 5")

        if self.reply_delay_seconds < 0:
            raise ValueError("AIRA_REPLY_DELAY_SECONDS must be >= 0")
        if self.timer_sweep_seconds <= 0:
            raise ValueError("AIRA_TIMER_SWEEP_SECONDS must be > 0")
        if self.heartbeat_seconds <= 0:
            raise ValueError("AIRA_HEARTBEAT_SECONDS must be > 0")
        if self.account_fetch_attempts < 1:
            raise ValueError("AIRA_ACCOUNT_FETCH_ATTEMPTS must be >= 1")
        if self.stream_reconnect_max_seconds < 1:
            raise ValueError("AIRA_STREAM_RECONNECT_MAX_SECONDS must be >= 1")
        if self.reaction_affinity_increment < 0:
            raise ValueError("AIRA_REACTION_AFFINITY must be >= 0")
