"""
Settings: JSON config file at ~/.chat-sessions/config.json.

``CHAT_SESSIONS_CONFIG`` overrides the path. Missing or unreadable files fall
back to defaults.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from chat_sessions.models.options import OptionGroup, OptionItem

logger = logging.getLogger(__name__)

CONFIG_ENV = "CHAT_SESSIONS_CONFIG"
DEFAULT_CONFIG_FILE = Path.home() / ".chat-sessions" / "config.json"


def default_option_groups() -> list[OptionGroup]:
    return [
        OptionGroup(
            id="model",
            name="Model",
            description="Language model used for responses",
            items=[
                OptionItem(id="basic", name="Basic"),
                OptionItem(id="pro", name="Pro"),
                OptionItem(id="ultra", name="Ultra"),
            ],
        ),
        OptionGroup(
            id="subagent",
            name="Sub-agent",
            description="Helper agent invoked for the session",
            items=[
                OptionItem(id="basic", name="Basic"),
                OptionItem(id="summarizer", name="Summarizer"),
            ],
        ),
    ]


class Settings(BaseModel):
    participant: str = "chatbot"
    session_id_prefix: str = "session-"
    welcome_message: str = "Hi! Send a message to start a new session."
    handler_delay: float = 0.5
    stream_step_delay: float = 0.8
    stream_steps: int = 3
    log_level: str = "WARNING"
    option_groups: list[OptionGroup] = Field(default_factory=default_option_groups)


def config_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return Path(path)
    env = os.environ.get(CONFIG_ENV)
    return Path(env) if env else DEFAULT_CONFIG_FILE


def _load_raw(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def load_settings(path: Optional[Path] = None) -> Settings:
    file = config_path(path)
    raw = _load_raw(file)
    try:
        return Settings.model_validate(raw)
    except ValidationError as e:
        logger.warning("Ignoring invalid config %s: %s", file, e)
        return Settings()


def save_settings(settings: Settings, path: Optional[Path] = None) -> Path:
    file = config_path(path)
    file.parent.mkdir(parents=True, exist_ok=True)
    file.write_text(json.dumps(settings.model_dump(mode="json"), indent=2))
    return file
