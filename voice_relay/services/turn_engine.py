"""
Turn Engine: one language model turn per finalized utterance.

The Turn Engine is stateless: each submit() sends the system prompt and a single
user utterance, with the registered actions advertised as tools, and returns
either a TextReply or an ActionRequest. A single instance is shared by all sessions.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from voice_relay.config.constants import (
    DEFAULT_OPENAI_MODEL,
    DEFAULT_SYSTEM_PROMPT,
    LOGGER_NAME,
    OPENAI_CHAT_COMPLETIONS_URL,
)
from voice_relay.errors import TurnEngineError
from voice_relay.models.message_schemas import ActionRequest, TextReply, TurnResult

logger = logging.getLogger(LOGGER_NAME)

DEFAULT_TIMEOUT = 20.0  # seconds


class TurnEngine(ABC):
    """Request/response capability: utterance in, reply or action request out."""

    @abstractmethod
    async def submit(self, utterance: str) -> TurnResult:
        """
        Run one language model turn.

        Raises:
            TurnEngineError: On provider/network failure or a malformed response
        """

    async def close(self) -> None:
        """Release any pooled connections."""


def parse_chat_completion(data: Dict[str, Any]) -> TurnResult:
    """
    Convert a chat completions response body into a TurnResult.

    A tool (or legacy function) call becomes an ActionRequest; anything else is a TextReply.

    Raises:
        TurnEngineError: If the body does not have the chat completion shape or the tool arguments are not a JSON object
    """
    try:
        message = data["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as e:
        raise TurnEngineError(f"Malformed language model response: {e}") from e
    if not isinstance(message, dict):
        raise TurnEngineError("Malformed language model response: message is not an object")

    call = None
    tool_calls = message.get("tool_calls") or []
    if not isinstance(tool_calls, list):
        raise TurnEngineError("Malformed language model response: tool_calls is not a list")
    if tool_calls:
        if not isinstance(tool_calls[0], dict):
            raise TurnEngineError("Malformed language model response: tool call is not an object")
        call = tool_calls[0].get("function")
    elif message.get("function_call"):
        call = message["function_call"]

    if call:
        if not isinstance(call, dict):
            raise TurnEngineError("Malformed language model response: function call is not an object")
        name = call.get("name")
        if not name:
            raise TurnEngineError("Language model requested an action without a name")
        raw_arguments = call.get("arguments") or "{}"
        try:
            arguments = json.loads(raw_arguments) if isinstance(raw_arguments, str) else raw_arguments
        except json.JSONDecodeError as e:
            raise TurnEngineError(f"Invalid arguments for action {name}: {e}") from e
        if not isinstance(arguments, dict):
            raise TurnEngineError(f"Arguments for action {name} must be an object")
        return ActionRequest(name=name, arguments=arguments)

    content = message.get("content")
    if content is not None and not isinstance(content, str):
        raise TurnEngineError("Malformed language model response: content is not a string")
    return TextReply(value=(content or "").strip())


class OpenAITurnEngine(TurnEngine):
    """Turn Engine backed by the OpenAI chat completions REST API."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_OPENAI_MODEL,
        temperature: float = 0.2,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        tools: Optional[List[Dict[str, Any]]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        url: str = OPENAI_CHAT_COMPLETIONS_URL,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.system_prompt = system_prompt
        self.tools = tools or []
        self.timeout = timeout
        self.url = url
        self._session_factory = session_factory
        self._session: Optional[aiohttp.ClientSession] = None
        logger.info(f"OpenAITurnEngine initialized with model: {model}")

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            factory = self._session_factory or aiohttp.ClientSession
            self._session = factory()
        return self._session

    def build_payload(self, utterance: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": utterance},
            ],
            "temperature": self.temperature,
        }
        if self.tools:
            payload["tools"] = self.tools
            payload["tool_choice"] = "auto"
        return payload

    async def submit(self, utterance: str) -> TurnResult:
        if not self.api_key:
            raise TurnEngineError("OPENAI_API_KEY not configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        session = self._get_session()
        try:
            async with session.post(
                self.url,
                json=self.build_payload(utterance),
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    raise TurnEngineError(f"Language model returned HTTP {response.status}: {body[:200]}")
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TurnEngineError(f"Language model request failed: {e!r}") from e
        except json.JSONDecodeError as e:
            raise TurnEngineError(f"Language model returned invalid JSON: {e}") from e

        result = parse_chat_completion(data)
        logger.debug(f"Language model result: {result}")
        return result

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
