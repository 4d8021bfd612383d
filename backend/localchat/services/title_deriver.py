"""
Best-effort session titles from the opening message.

A failed or empty derivation returns None so the caller keeps the
placeholder title and a later exchange can try again.
"""
import logging
from typing import Optional

from localchat.core.config import settings
from localchat.core.i18n import get_translations
from localchat.services.llm_client import LLMClient, get_llm_client

logger = logging.getLogger(__name__)

QUOTE_CHARS = "\"'`“”‘’「」『』《》"
TRAILING_PUNCTUATION = ".。!！?？:：;；,，"


def clean_title(raw: str, max_chars: Optional[int] = None) -> str:
    """First non-empty line, without surrounding quotes or trailing punctuation."""
    limit = max_chars or settings.TITLE_MAX_CHARS
    line = next((ln.strip() for ln in raw.splitlines() if ln.strip()), "")

    # Models sometimes answer "Title: ..."
    if line.lower().startswith("title:"):
        line = line[len("title:"):].strip()

    # Punctuation may sit inside or outside the quotes
    line = line.rstrip(TRAILING_PUNCTUATION).strip(QUOTE_CHARS).strip()
    line = line.rstrip(TRAILING_PUNCTUATION).strip()
    return line[:limit].strip()


class TitleDeriver:
    """Asks the model provider for a short title."""

    def __init__(self, client: Optional[LLMClient] = None):
        self.client = client or get_llm_client()

    async def derive(self, first_message: str, language: str = "en") -> Optional[str]:
        prompt = get_translations(language)["title_prompt"].format(message=first_message)
        try:
            raw = await self.client.chat(
                [{"role": "user", "content": prompt}],
                temperature=settings.TITLE_TEMPERATURE,
                max_tokens=32,
            )
        except Exception as e:
            logger.warning(f"Title derivation failed: {e}")
            return None

        title = clean_title(raw or "")
        if not title:
            logger.warning("Title derivation returned an empty title")
            return None
        return title
