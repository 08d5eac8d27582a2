# config.py
import os
import logging
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://models.github.ai/inference"
DEFAULT_MODEL = "openai/gpt-4.1"


@dataclass
class Settings:
    github_token: Optional[str] = None
    endpoint: str = DEFAULT_ENDPOINT
    model: str = DEFAULT_MODEL
    temperature: float = 0.2
    max_tokens: int = 1000
    timeout: float = 20.0
    upload_dir: str = "uploads"
    export_dir: str = "exports"
    log_level: str = "INFO"

    @property
    def assist_enabled(self) -> bool:
        return bool(self.github_token)


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s=%r, using %s", name, raw, default)
        return default


def load_settings() -> Settings:
    """Read settings from the environment, after loading a local .env file if present."""
    load_dotenv()
    token = os.getenv("GITHUB_TOKEN") or None
    return Settings(
        github_token=token.strip() if token else None,
        endpoint=os.getenv("GITHUB_AI_ENDPOINT", DEFAULT_ENDPOINT),
        model=os.getenv("GITHUB_AI_MODEL", DEFAULT_MODEL),
        temperature=_env_number("ASSIST_TEMPERATURE", 0.2, float),
        max_tokens=_env_number("ASSIST_MAX_TOKENS", 1000, int),
        timeout=_env_number("ASSIST_TIMEOUT", 20.0, float),
        upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
        export_dir=os.getenv("EXPORT_DIR", "exports"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
