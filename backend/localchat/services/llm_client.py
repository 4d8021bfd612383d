"""
LLM Client - Abstraction layer for LLM providers (Ollama, vLLM, etc.)

Supports Ollama native API (/api/chat) and OpenAI-compatible API (/v1/chat/completions).
The provider can be switched via LLM_PROVIDER environment variable.

Every provider failure (unreachable server, HTTP error status, malformed
payload) surfaces as a single LLMConnectionError.
"""
import json
import logging
from typing import AsyncGenerator, Callable, Dict, List, Optional, Sequence

import httpx

from localchat.core.config import settings
from localchat.core.exceptions import LLMConnectionError
from localchat.schemas.chat import MessageRecord, Role

logger = logging.getLogger(__name__)

# Receives the full text generated so far, never a delta
ChunkCallback = Callable[[str], None]


def build_chat_messages(
    history: Sequence[MessageRecord],
    new_message: str,
    system_instruction: Optional[str] = None,
) -> List[Dict[str, str]]:
    """
    Convert prior turns plus the new user text into provider chat messages.

    The system message is only sent when the instruction is not blank.
    """
    messages: List[Dict[str, str]] = []
    if system_instruction and system_instruction.strip():
        messages.append({"role": "system", "content": system_instruction.strip()})

    for msg in history:
        role = "user" if msg.role == Role.USER else "assistant"
        messages.append({"role": role, "content": msg.content})

    messages.append({"role": "user", "content": new_message})
    return messages


class LLMClient:
    """
    Unified LLM client supporting multiple providers.

    Supported providers:
    - ollama: Local Ollama server using native API (/api/chat)
    - vllm: vLLM server using OpenAI-compatible API (/v1/chat/completions)
    """

    def __init__(
        self,
        api_base: Optional[str] = None,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        timeout: Optional[float] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ):
        self.api_base = (api_base or settings.LLM_API_BASE).rstrip("/")
        self.model = model or settings.LLM_MODEL
        self.provider = provider or settings.LLM_PROVIDER
        self.timeout = timeout or float(settings.LLM_TIMEOUT)
        self.max_tokens = max_tokens or settings.LLM_MAX_TOKENS
        self.temperature = settings.LLM_TEMPERATURE if temperature is None else temperature

    def _chat_url(self) -> str:
        if self.provider == "ollama":
            return f"{self.api_base}/api/chat"
        return f"{self.api_base}/v1/chat/completions"

    def _payload(
        self,
        messages: List[Dict],
        temperature: float,
        max_tokens: int,
        stream: bool,
    ) -> Dict:
        if self.provider == "ollama":
            return {
                "model": self.model,
                "messages": messages,
                "stream": stream,
                "options": {
                    "temperature": temperature,
                    "num_predict": max_tokens,
                },
            }
        return {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": stream,
        }

    async def chat(
        self,
        messages: List[Dict],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Send chat completion request and return the response content.

        Args:
            messages: List of message dicts with 'role' and 'content' keys
            temperature: Sampling temperature (defaults to the client setting)
            max_tokens: Maximum tokens to generate

        Returns:
            The assistant's response content as a string

        Raises:
            LLMConnectionError: If the request fails or the response is malformed
        """
        payload = self._payload(
            messages,
            temperature=self.temperature if temperature is None else temperature,
            max_tokens=max_tokens or self.max_tokens,
            stream=False,
        )

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self._chat_url(), json=payload)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as e:
            raise LLMConnectionError(f"LLM request failed: {e}") from e
        except ValueError as e:
            raise LLMConnectionError(f"LLM returned invalid JSON: {e}") from e

        try:
            if self.provider == "ollama":
                return data["message"]["content"]
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMConnectionError(f"Unexpected LLM response shape: {e}") from e

    async def chat_stream(
        self,
        messages: List[Dict],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncGenerator[str, None]:
        """
        Send chat completion request with streaming and yield response deltas.

        Args:
            messages: List of message dicts with 'role' and 'content' keys
            temperature: Sampling temperature (defaults to the client setting)
            max_tokens: Maximum tokens to generate

        Yields:
            Response content chunks as they arrive

        Raises:
            LLMConnectionError: If the request fails or the server reports an error
        """
        payload = self._payload(
            messages,
            temperature=self.temperature if temperature is None else temperature,
            max_tokens=max_tokens or self.max_tokens,
            stream=True,
        )

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream("POST", self._chat_url(), json=payload) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        if self.provider == "ollama":
                            content, done = self._parse_ollama_line(line)
                        else:
                            content, done = self._parse_openai_line(line)
                        if content:
                            yield content
                        if done:
                            break
        except httpx.HTTPError as e:
            raise LLMConnectionError(f"LLM stream failed: {e}") from e

    @staticmethod
    def _parse_ollama_line(line: str) -> tuple[str, bool]:
        """Ollama sends one JSON object per line."""
        if not line:
            return "", False
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            return "", False
        if data.get("error"):
            raise LLMConnectionError(f"LLM server error: {data['error']}")
        content = (data.get("message") or {}).get("content", "")
        return content, bool(data.get("done", False))

    @staticmethod
    def _parse_openai_line(line: str) -> tuple[str, bool]:
        """OpenAI-compatible servers send SSE 'data: {...}' lines ending with [DONE]."""
        if not line.startswith("data: "):
            return "", False
        data_str = line[6:]
        if data_str.strip() == "[DONE]":
            return "", True
        try:
            data = json.loads(data_str)
        except json.JSONDecodeError:
            return "", False
        if data.get("error"):
            raise LLMConnectionError(f"LLM server error: {data['error']}")
        choices = data.get("choices") or [{}]
        delta = choices[0].get("delta", {})
        return delta.get("content") or "", False

    async def stream_reply(
        self,
        history: Sequence[MessageRecord],
        new_message: str,
        on_chunk: ChunkCallback,
        system_instruction: Optional[str] = None,
    ) -> str:
        """
        Stream a reply to new_message given the prior turns.

        on_chunk is called with the cumulative text after every non-empty
        delta. The return value equals the last text passed to on_chunk.

        Raises:
            LLMConnectionError: On any provider failure; text already passed
                to on_chunk is not a result.
        """
        messages = build_chat_messages(history, new_message, system_instruction)
        full_text = ""

        async for delta in self.chat_stream(messages):
            if not delta:
                continue
            full_text += delta
            on_chunk(full_text)

        logger.debug(f"Stream finished: {len(full_text)} chars")
        return full_text

    async def health_check(self) -> Dict:
        """
        Check if the LLM server is reachable and responsive.

        Returns:
            Dict with 'status', 'provider', 'model', and optional 'error' keys
        """
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                if self.provider == "ollama":
                    # Ollama native API - check tags endpoint
                    resp = await client.get(f"{self.api_base}/api/tags")
                else:
                    # OpenAI-compatible API
                    resp = await client.get(f"{self.api_base}/v1/models")

                if resp.status_code == 200:
                    return {
                        "status": "healthy",
                        "provider": self.provider,
                        "model": self.model,
                        "api_base": self.api_base,
                    }
                else:
                    return {
                        "status": "unhealthy",
                        "provider": self.provider,
                        "model": self.model,
                        "error": f"HTTP {resp.status_code}",
                    }
        except Exception as e:
            return {
                "status": "unreachable",
                "provider": self.provider,
                "model": self.model,
                "api_base": self.api_base,
                "error": str(e),
            }


# Default client instance
_default_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get the default LLM client instance (singleton)."""
    global _default_client
    if _default_client is None:
        _default_client = LLMClient()
    return _default_client
