"""
Runtime settings read from the environment (and an optional .env file).
"""

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

logger = logging.getLogger("captionburn")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    """All tunables for one server or CLI process."""

    work_dir: str = ".work"
    fonts_dir: str = "fonts"
    default_font: str = "Roboto"

    openai_api_key: str | None = None
    keyword_model: str = "gpt-4o-mini"
    pexels_api_key: str | None = None
    keyword_char_budget: int = 4000

    fetch_attempts: int = 3
    fetch_timeout: float = 30.0
    fetch_backoff: float = 0.5
    fetch_deadline: float = 120.0

    ffmpeg_binary: str = "ffmpeg"
    encode_timeout: float | None = None
    max_concurrent_encodes: int = 2
    max_upload_bytes: int = 1024 * 1024 * 1024

    log_level: str = "INFO"


def load_settings(env_file: str | None = None) -> Settings:
    """Load settings, reading ``env_file`` (or ./.env) first when present."""
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    defaults = Settings()
    return Settings(
        work_dir=os.getenv("CAPTIONBURN_WORK_DIR", defaults.work_dir),
        fonts_dir=os.getenv("CAPTIONBURN_FONTS_DIR", defaults.fonts_dir),
        default_font=os.getenv("CAPTIONBURN_DEFAULT_FONT", defaults.default_font),
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        keyword_model=os.getenv("CAPTIONBURN_KEYWORD_MODEL", defaults.keyword_model),
        pexels_api_key=os.getenv("PEXELS_API_KEY") or None,
        keyword_char_budget=_env_int("CAPTIONBURN_KEYWORD_CHAR_BUDGET", defaults.keyword_char_budget),
        fetch_attempts=max(1, _env_int("CAPTIONBURN_FETCH_ATTEMPTS", defaults.fetch_attempts)),
        fetch_timeout=_env_float("CAPTIONBURN_FETCH_TIMEOUT", defaults.fetch_timeout),
        fetch_backoff=_env_float("CAPTIONBURN_FETCH_BACKOFF", defaults.fetch_backoff),
        fetch_deadline=_env_float("CAPTIONBURN_FETCH_DEADLINE", defaults.fetch_deadline),
        ffmpeg_binary=os.getenv("CAPTIONBURN_FFMPEG", defaults.ffmpeg_binary),
        encode_timeout=_env_float("CAPTIONBURN_ENCODE_TIMEOUT", None),
        max_concurrent_encodes=_env_int(
            "CAPTIONBURN_MAX_CONCURRENT_ENCODES", defaults.max_concurrent_encodes
        ),
        max_upload_bytes=_env_int("CAPTIONBURN_MAX_UPLOAD_BYTES", defaults.max_upload_bytes),
        log_level=os.getenv("CAPTIONBURN_LOG_LEVEL", defaults.log_level).upper(),
    )


def setup_logging(verbose: bool = False, level: str | None = None) -> None:
    """Setup logging configuration."""
    if level is None:
        level = "DEBUG" if verbose else "INFO"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
