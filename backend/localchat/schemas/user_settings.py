"""
User-facing settings: theme, language, send key, font size, system instruction.

UserSettings is immutable; changes produce a new snapshot via with_changes().
"""
from typing import Literal

from pydantic import BaseModel, Field

from localchat.core.i18n import Language

Theme = Literal["light", "dark", "system"]
SendKey = Literal["Enter", "Ctrl+Enter"]
FontSize = Literal["small", "medium", "large"]


class UserSettings(BaseModel):
    """Snapshot of the user's preferences."""

    theme: Theme = "system"
    language: Language = "en"
    send_key: SendKey = "Ctrl+Enter"
    font_size: FontSize = "medium"
    system_instruction: str = Field("", max_length=10000)

    class Config:
        frozen = True

    def with_changes(self, **changes) -> "UserSettings":
        """Return a validated copy with the given fields replaced."""
        data = self.model_dump()
        data.update(changes)
        return UserSettings.model_validate(data)

    def should_submit(
        self,
        key: str,
        ctrl: bool = False,
        meta: bool = False,
        shift: bool = False,
    ) -> bool:
        """
        Decide whether a key press submits the input box.

        "Enter" mode submits on a bare Enter (Shift+Enter inserts a newline);
        "Ctrl+Enter" mode submits only with Ctrl or Cmd held.
        """
        if key != "Enter":
            return False
        if self.send_key == "Enter":
            return not shift
        return ctrl or meta
