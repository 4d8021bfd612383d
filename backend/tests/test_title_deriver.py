"""
Tests for title derivation.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from localchat.core.exceptions import LLMConnectionError
from localchat.services.title_deriver import TitleDeriver, clean_title


class TestCleanTitle:
    def test_plain(self):
        assert clean_title("Weekend Trip Planning") == "Weekend Trip Planning"

    def test_quotes_and_punctuation_removed(self):
        assert clean_title('"Python List Sorting."') == "Python List Sorting"

    def test_title_prefix_removed(self):
        assert clean_title("Title: Recipe Ideas") == "Recipe Ideas"

    def test_first_non_empty_line(self):
        assert clean_title("\n\nMorning Run\nHere is why...") == "Morning Run"

    def test_chinese(self):
        assert clean_title("「旅行计划」。") == "旅行计划"

    def test_truncated(self):
        assert clean_title("word " * 40, max_chars=10) == "word word"

    def test_empty(self):
        assert clean_title("  \n ") == ""


class TestTitleDeriver:
    @staticmethod
    def _client(return_value=None, side_effect=None):
        client = MagicMock()
        client.chat = AsyncMock(return_value=return_value, side_effect=side_effect)
        return client

    @pytest.mark.asyncio
    async def test_derive(self):
        client = self._client("'Trip To Kyoto'")
        title = await TitleDeriver(client).derive("Help me plan a trip to Kyoto")

        assert title == "Trip To Kyoto"
        messages = client.chat.call_args.args[0]
        assert "Help me plan a trip to Kyoto" in messages[0]["content"]
        assert "max 6 words" in messages[0]["content"]

    @pytest.mark.asyncio
    async def test_derive_uses_language_prompt(self):
        client = self._client("京都旅行")
        title = await TitleDeriver(client).derive("帮我计划京都之行", language="zh")

        assert title == "京都旅行"
        assert "最多6个字" in client.chat.call_args.args[0][0]["content"]

    @pytest.mark.asyncio
    async def test_failure_returns_none(self):
        client = self._client(side_effect=LLMConnectionError("down"))
        assert await TitleDeriver(client).derive("Hi") is None

    @pytest.mark.asyncio
    async def test_empty_output_returns_none(self):
        assert await TitleDeriver(self._client("  ")).derive("Hi") is None
