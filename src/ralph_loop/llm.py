from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from langchain_openai import ChatOpenAI

from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT: int = 120
_DEFAULT_MAX_RETRIES: int = 3


def ensure_openai_api_key(project_root: Path | None = None) -> str:
    """Load OPENAI_API_KEY from the environment or the project's ``.env``.

    Args:
        project_root: Directory searched for a ``.env`` file (cwd if omitted).

    Returns:
        The API key string.

    Raises:
        RuntimeError: If OPENAI_API_KEY is unavailable after all sources are checked.
    """
    root = project_root if project_root is not None else Path.cwd()
    env_path = root / ".env"
    if env_path.is_file():
        load_dotenv(env_path)

    key = os.getenv("OPENAI_API_KEY", "").strip()
    if not key:
        raise RuntimeError("OPENAI_API_KEY is required to run the agent")
    return key


def get_chat_model(
    settings: RuntimeSettings,
    *,
    timeout: int = _DEFAULT_TIMEOUT,
    max_retries: int = _DEFAULT_MAX_RETRIES,
    project_root: Path | None = None,
) -> ChatOpenAI:
    """Construct the ChatOpenAI model the loop agent runs on.

    Model name and temperature come from ``RALPH_MODEL`` / ``RALPH_TEMPERATURE``.
    Transient failures are retried by the client itself; the loop never
    retries a failed agent call on top of that.

    Raises:
        RuntimeError: If OPENAI_API_KEY is not available.
    """
    ensure_openai_api_key(project_root=project_root)
    logger.debug("Creating chat model %s (temperature=%s)", settings.model_name, settings.temperature)
    return ChatOpenAI(
        model=settings.model_name,
        temperature=settings.temperature,
        timeout=timeout,
        max_retries=max_retries,
    )
