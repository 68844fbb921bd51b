"""
Backend configuration.

Everything is read from environment variables once, at startup, into a
'BackendConfig' that is then passed explicitly to the components that need it.
API keys are looked up as Renku secret files first and environment variables
second, so the same image runs locally and on Renku.

Variables:
    OPENAI_API_KEY        - required.
    SERPER_API_KEY        - required.
    MODEL                 - chat model, default 'gpt-4o-mini'.
    OPENAI_BASE_URL       - optional OpenAI-compatible endpoint.
    DATABASE_URL          - async SQLAlchemy URL, default 'sqlite+aiosqlite:///chat.db'.
    MAX_STEPS             - inference steps per turn, default 10.
    SEARCH_RESULT_COUNT   - results per search, default 10.
    MAX_DURATION_SECONDS  - wall-clock ceiling per turn, default 60.
    LOG_LEVEL             - loguru level, default 'INFO'.
"""

import os
import sys
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field

from research_toolkit.settings import (
    DEFAULT_MAX_DURATION_SECONDS,
    DEFAULT_MAX_STEPS,
    DEFAULT_SEARCH_RESULT_COUNT,
    AgentSettings,
)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///chat.db"
SECRETS_DIR = Path("/secrets")


def _get_secret(name: str, secrets_dir: Path = SECRETS_DIR) -> str:
    """Load a secret from a Renku secret file or an environment variable.

    Checks in order:
    1. /secrets/<name> (Renku secret file)
    2. <name> environment variable

    Raises ValueError if neither is available.
    """
    secret_file = secrets_dir / name
    if secret_file.exists():
        return secret_file.read_text().strip()
    key = os.environ.get(name, "")
    if not key:
        raise ValueError(
            f"{name} not found. Either:\n"
            f"  - Add it as a Renku secret at {secret_file}, or\n"
            f"  - Set the {name} environment variable."
        )
    return key


class BackendConfig(BaseModel):
    openai_api_key: str
    serper_api_key: str
    model: str = DEFAULT_MODEL
    openai_base_url: str | None = None
    database_url: str = DEFAULT_DATABASE_URL
    log_level: str = "INFO"
    agent: AgentSettings = Field(default_factory=AgentSettings)

    @classmethod
    def from_env(cls, secrets_dir: Path = SECRETS_DIR) -> "BackendConfig":
        return cls(
            openai_api_key=_get_secret("OPENAI_API_KEY", secrets_dir),
            serper_api_key=_get_secret("SERPER_API_KEY", secrets_dir),
            model=os.environ.get("MODEL", DEFAULT_MODEL),
            openai_base_url=os.environ.get("OPENAI_BASE_URL") or None,
            database_url=os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            agent=AgentSettings(
                max_steps=int(os.environ.get("MAX_STEPS", DEFAULT_MAX_STEPS)),
                search_result_count=int(os.environ.get("SEARCH_RESULT_COUNT", DEFAULT_SEARCH_RESULT_COUNT)),
                max_duration_seconds=float(os.environ.get("MAX_DURATION_SECONDS", DEFAULT_MAX_DURATION_SECONDS)),
            ),
        )


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level)
