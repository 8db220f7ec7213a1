"""
Runtime settings and credential resolution
"""
import logging
import os
import sys
from dataclasses import dataclass
from typing import Mapping, Optional

from multisync.core.errors import MissingApiKeyError

API_KEY_ENV = "OPENAI_API_KEY"
DEFAULT_MODEL = "gpt-4.1"

LOG_FORMAT = "%(asctime)s [%(levelname)8s] [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_api_key(explicit_key: Optional[str] = None,
                    environ: Optional[Mapping[str, str]] = None) -> str:
    """Return the explicit key if given, else the environment key.

    Raises MissingApiKeyError when neither yields a non-blank value.
    """
    if explicit_key and isinstance(explicit_key, str):
        key = explicit_key
    else:
        env = os.environ if environ is None else environ
        key = env.get(API_KEY_ENV, "")
    if not key or not key.strip():
        raise MissingApiKeyError(
            f"Missing OpenAI API key. Provide --api-key or set {API_KEY_ENV}."
        )
    return key


@dataclass
class Settings:
    """Process settings read from the environment"""
    api_key: Optional[str] = None
    default_model: str = DEFAULT_MODEL
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            api_key=env.get(API_KEY_ENV) or None,
            default_model=env.get("MULTISYNC_DEFAULT_MODEL", DEFAULT_MODEL),
            log_level=env.get("MULTISYNC_LOG_LEVEL", "INFO"),
        )


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Install a single stderr handler on the package logger"""
    logger = logging.getLogger("multisync")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        logger.addHandler(handler)

    return logger
