import logging
import os
import re
from datetime import timedelta
from enum import Enum
from typing import List, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    pass


class Environment(str, Enum):
    development = "development"
    production = "production"


_DURATION_UNITS = {
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
    "y": timedelta(days=365),
}
_DURATION_PART = re.compile(r"(\d+)([smhdwy])")
_DURATION = re.compile(r"(?:\d+[smhdwy])+")


def parse_duration(text: str) -> timedelta:
    """
    Parse a duration such as ``30s``, ``1h30m`` or ``1y``.

    Units: s, m, h, d (24h), w (7d), y (365d). Every number needs a unit;
    negative and empty durations are rejected with ValueError.
    """
    text = text.strip()
    if not _DURATION.fullmatch(text):
        raise ValueError(f"invalid duration {text!r}")
    total = timedelta()
    for amount, unit in _DURATION_PART.findall(text):
        total += int(amount) * _DURATION_UNITS[unit]
    return total


class StoreBackend(str, Enum):
    memory = "memory"
    json = "json"
    sql = "sql"


class Settings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8080
    env: Environment = Environment.development
    allow_origins: List[str] = ["*"]
    store: StoreBackend = StoreBackend.memory
    data_file: str = "./data/coupons.data.json"
    database_url: str = "sqlite:///./coupons.db"
    log_level: str = "INFO"
    time_alive: timedelta = timedelta(days=365)
    shutdown_timeout: timedelta = timedelta(seconds=30)

    @field_validator("env", mode="before")
    @classmethod
    def normalise_env(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("store", mode="before")
    @classmethod
    def normalise_store(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("allow_origins", mode="before")
    @classmethod
    def split_origins(cls, v):
        if not isinstance(v, str):
            return v
        if not v.strip():
            return ["*"]
        origins = []
        for idx, part in enumerate(v.split(",")):
            origin = part.strip()
            if not origin:
                raise ValueError(f"origin at position {idx} is empty")
            if origin != "*":
                parsed = urlparse(origin)
                if not parsed.scheme or not parsed.netloc:
                    raise ValueError(f"invalid origin at position {idx}: {origin}")
            origins.append(origin)
        return origins

    @field_validator("time_alive", "shutdown_timeout", mode="before")
    @classmethod
    def parse_durations(cls, v):
        if isinstance(v, str):
            return parse_duration(v)
        return v

    @field_validator("time_alive", "shutdown_timeout")
    @classmethod
    def positive_duration(cls, v: timedelta) -> timedelta:
        if v <= timedelta():
            raise ValueError("duration must be positive")
        return v

    @field_validator("log_level")
    @classmethod
    def known_level(cls, v: str) -> str:
        level = v.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {v!r}")
        return level


# env var -> Settings field
_ENV_VARS = {
    "API_HOST": "host",
    "API_PORT": "port",
    "API_ENV": "env",
    "API_ALLOW_ORIGINS": "allow_origins",
    "COUPON_STORE": "store",
    "COUPON_DATA_FILE": "data_file",
    "DATABASE_URL": "database_url",
    "LOG_LEVEL": "log_level",
    "API_TIME_ALIVE": "time_alive",
    "API_SHUTDOWN_TIMEOUT": "shutdown_timeout",
}


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Build Settings from the process environment.

    A ``.env`` file is loaded first (``env_file`` or the nearest one found);
    variables already set in the environment take precedence over it.
    """
    if env_file:
        if not load_dotenv(env_file):
            logger.warning("Failed to load .env file at %s (skipping)", env_file)
    else:
        load_dotenv()

    values = {}
    for var, field in _ENV_VARS.items():
        value = os.getenv(var)
        if value is not None and value != "":
            values[field] = value

    try:
        return Settings(**values)
    except ValidationError as exc:
        raise ConfigError(f"failed to load config: {exc}") from exc
