import logging
import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv


@dataclass(frozen=True)
class Settings:
    credentials_path: str = "credentials.json"
    token_path: str = "token.json"
    log_level: int = logging.INFO


def _parse_level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown LOG_LEVEL {name!r}")
    return level


def load_settings(env_file=None) -> Settings:
    """
    Read settings from the environment, after loading a .env file if present
    (the given path, else the nearest one above the working directory).
    Values already in the environment win over the .env file.
    """
    load_dotenv(env_file or find_dotenv(usecwd=True))
    return Settings(
        credentials_path=os.getenv("CALSUM_CREDENTIALS") or "credentials.json",
        token_path=os.getenv("CALSUM_TOKEN") or "token.json",
        log_level=_parse_level(os.getenv("LOG_LEVEL") or "INFO"),
    )
