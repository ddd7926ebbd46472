#!/usr/bin/env python3
"""
Generation module for the pizzeria bot.

One chat-completion interface, ``send_turn(messages, tools, temperature)``,
with swappable provider adapters:

- ``OpenAICompatibleProvider``: any OpenAI-style ``/chat/completions`` API
  (DeepSeek by default, Groq, OpenAI).
- ``GeminiProvider``: Google ``generateContent`` with function declarations.

Messages are kept in the OpenAI shape internally; adapters translate.
"""

import json
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel, Field

from ..utils.logger import get_logger
from .config import Config

logger = get_logger("llm")

MAX_ATTEMPTS = 3
RETRY_BASE_DELAY = 2


class LLMError(Exception):
    """The model provider failed or answered with something unusable."""


class RateLimitError(LLMError):
    """Rate limit or quota exhausted; safe to retry after a pause."""


class ToolCall(BaseModel):
    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ModelTurn(BaseModel):
    text: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)


def _raise_for_response(resp: requests.Response, provider: str):
    if resp.status_code == 200:
        return
    body = resp.text or ""
    if resp.status_code == 429 or "RESOURCE_EXHAUSTED" in body or "quota" in body.lower():
        raise RateLimitError(f"{provider} rate limited ({resp.status_code})")
    raise LLMError(f"{provider} error {resp.status_code}: {body[:300]}")


def assistant_tool_message(turn: ModelTurn) -> Dict[str, Any]:
    """The assistant message that records the tool calls of ``turn``."""
    return {
        "role": "assistant",
        "content": turn.text,
        "tool_calls": [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.arguments, ensure_ascii=False)},
            }
            for call in turn.tool_calls
        ],
    }


def tool_result_message(call: ToolCall, response: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "role": "tool",
        "tool_call_id": call.id,
        "name": call.name,
        "content": json.dumps(response, ensure_ascii=False, default=str),
    }


class ChatProvider(ABC):
    name = "base"

    @abstractmethod
    def send_turn(self, messages: List[Dict[str, Any]], tools: Optional[List[Dict[str, Any]]] = None,
                  temperature: float = 0.5) -> ModelTurn:
        raise NotImplementedError

    def complete(self, system: str, prompt: str, temperature: float = 0.0) -> str:
        """Single-shot text completion used by the small NLU validators."""
        turn = self.send_turn(
            [{"role": "system", "content": system}, {"role": "user", "content": prompt}],
            tools=None,
            temperature=temperature,
        )
        return (turn.text or "").strip()


class OpenAICompatibleProvider(ChatProvider):
    name = "openai"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.api_key = api_key or Config.LLM_API_KEY
        self.model = model or Config.LLM_MODEL
        self.base_url = (base_url or Config.LLM_BASE_URL).rstrip("/")
        self.timeout = timeout or Config.LLM_TIMEOUT
        if not self.api_key:
            raise ValueError("LLM API key is required")

    def send_turn(self, messages, tools=None, temperature=0.5) -> ModelTurn:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
        }
        if tools:
            payload["tools"] = [{"type": "function", "function": t} for t in tools]
            payload["tool_choice"] = "auto"

        try:
            resp = requests.post(
                f"{self.base_url}/chat/completions",
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise LLMError(f"{self.name} request failed: {e}") from e
        _raise_for_response(resp, self.name)

        try:
            message = resp.json()["choices"][0]["message"]
        except (ValueError, KeyError, IndexError) as e:
            raise LLMError(f"Unexpected {self.name} response: {e}") from e

        calls = []
        for raw in message.get("tool_calls") or []:
            fn = raw.get("function", {})
            try:
                args = json.loads(fn.get("arguments") or "{}")
            except ValueError:
                logger.warning("Tool %s sent non-JSON arguments", fn.get("name"))
                args = {}
            calls.append(ToolCall(id=raw.get("id") or fn.get("name", "call"), name=fn.get("name", ""),
                                  arguments=args if isinstance(args, dict) else {}))
        return ModelTurn(text=message.get("content"), tool_calls=calls)


class GeminiProvider(ChatProvider):
    name = "gemini"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None):
        self.api_key = api_key or Config.GEMINI_API_KEY
        self.model = model or Config.GEMINI_MODEL
        self.timeout = timeout or Config.LLM_TIMEOUT
        self.api_base_url = f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
        if not self.api_key:
            raise ValueError("Gemini API key is required")

    @staticmethod
    def _to_contents(messages):
        system_parts = []
        contents = []
        for msg in messages:
            role = msg["role"]
            if role == "system":
                system_parts.append({"text": msg["content"]})
            elif role == "user":
                contents.append({"role": "user", "parts": [{"text": msg["content"]}]})
            elif role == "assistant":
                parts = [{"text": msg["content"]}] if msg.get("content") else []
                for call in msg.get("tool_calls") or []:
                    parts.append({"functionCall": {
                        "name": call["function"]["name"],
                        "args": json.loads(call["function"]["arguments"] or "{}"),
                    }})
                contents.append({"role": "model", "parts": parts})
            elif role == "tool":
                part = {"functionResponse": {"name": msg["name"], "response": json.loads(msg["content"])}}
                # consecutive tool results answer one model turn together
                if contents and contents[-1]["role"] == "function":
                    contents[-1]["parts"].append(part)
                else:
                    contents.append({"role": "function", "parts": [part]})
        return system_parts, contents

    def send_turn(self, messages, tools=None, temperature=0.5) -> ModelTurn:
        system_parts, contents = self._to_contents(messages)
        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {"temperature": temperature},
        }
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        if tools:
            payload["tools"] = [{"functionDeclarations": tools}]
            payload["toolConfig"] = {"functionCallingConfig": {"mode": "AUTO"}}

        try:
            resp = requests.post(self.api_base_url, params={"key": self.api_key}, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise LLMError(f"{self.name} request failed: {e}") from e
        _raise_for_response(resp, self.name)

        try:
            parts = resp.json()["candidates"][0]["content"].get("parts", [])
        except (ValueError, KeyError, IndexError) as e:
            raise LLMError(f"Unexpected {self.name} response: {e}") from e

        texts, calls = [], []
        for i, part in enumerate(parts):
            if "text" in part:
                texts.append(part["text"])
            elif "functionCall" in part:
                fn = part["functionCall"]
                calls.append(ToolCall(id=f"call_{i}_{fn.get('name')}", name=fn.get("name", ""),
                                      arguments=fn.get("args") or {}))
        text = "".join(texts).strip() or None
        return ModelTurn(text=text, tool_calls=calls)


def send_with_retry(provider: ChatProvider, messages, tools=None, temperature: float = 0.5,
                    max_attempts: int = MAX_ATTEMPTS, sleep=time.sleep) -> ModelTurn:
    """Call the provider, retrying only rate-limit errors with linear backoff."""
    for attempt in range(1, max_attempts + 1):
        try:
            return provider.send_turn(messages, tools=tools, temperature=temperature)
        except RateLimitError:
            if attempt == max_attempts:
                raise
            delay = RETRY_BASE_DELAY * attempt
            logger.warning("Rate limited by %s, retrying in %ss (attempt %d/%d)",
                           provider.name, delay, attempt, max_attempts)
            sleep(delay)


def get_chat_provider() -> ChatProvider:
    if Config.LLM_PROVIDER == "gemini":
        return GeminiProvider()
    return OpenAICompatibleProvider()
