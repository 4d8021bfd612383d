"""
Key-value persistence for UserSettings.

Settings live in a small JSON file. Anything unreadable or invalid falls
back to defaults so a bad file never blocks startup.
"""
import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from localchat.core.config import settings
from localchat.core.i18n import normalize_language
from localchat.schemas.user_settings import UserSettings

logger = logging.getLogger(__name__)


def detect_language() -> str:
    """Pick the initial language from the environment locale."""
    return normalize_language(os.getenv("LC_ALL") or os.getenv("LANG"))


class UserSettingsStore:
    """Loads and saves UserSettings as JSON."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or settings.USER_SETTINGS_PATH)

    def load(self) -> UserSettings:
        defaults = UserSettings(language=detect_language())
        if not self.path.exists():
            return defaults

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable settings file {self.path}: {e}")
            return defaults

        if not isinstance(data, dict):
            return defaults

        # Apply stored values one by one so a single bad value keeps the rest
        result = defaults
        for key, value in data.items():
            if key not in UserSettings.model_fields:
                continue
            try:
                result = result.with_changes(**{key: value})
            except ValidationError:
                logger.warning(f"Ignoring invalid setting {key}={value!r}")
        return result

    def save(self, user_settings: UserSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(
            json.dumps(user_settings.model_dump(), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
        tmp_path.replace(self.path)
