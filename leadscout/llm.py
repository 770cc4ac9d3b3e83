"""
Thin async wrapper around the LangChain chat model used as the lead provider.

Every SDK failure is re-raised as ``UpstreamError`` so the retry layer can
classify it by HTTP status and message without knowing the SDK.
"""

from __future__ import annotations

import logging
from typing import Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from leadscout import settings
from leadscout.errors import UpstreamError

logger = logging.getLogger("llm")

SYSTEM_PROMPT = (
    "You are a B2B lead research assistant. Only name real, currently operating "
    "companies you can verify. Answer with JSON only."
)


def _make_chat_client(model: str, temperature: Optional[float]) -> ChatOpenAI:
    kwargs = {"model": model, "verbose": False}
    # Some models only support the default temperature; omit override
    if temperature is not None and not (model or "").lower().startswith("gpt-5"):
        kwargs["temperature"] = temperature
    if settings.OPENAI_API_KEY:
        kwargs["api_key"] = settings.OPENAI_API_KEY
    return ChatOpenAI(**kwargs)


class ChatProvider:
    """Upstream generation provider: prompt in, free text out."""

    def __init__(self, model: Optional[str] = None, temperature: Optional[float] = None):
        self.model = model or settings.LANGCHAIN_MODEL
        self.temperature = temperature if temperature is not None else settings.TEMPERATURE
        self._clients: dict = {}

    def _client(self, temperature: Optional[float]) -> ChatOpenAI:
        key = temperature
        client = self._clients.get(key)
        if client is None:
            client = _make_chat_client(self.model, temperature)
            self._clients[key] = client
        return client

    async def generate(self, prompt: str, *, temperature: Optional[float] = None, json_mode: bool = False) -> str:
        temp = self.temperature if temperature is None else temperature
        messages = [SystemMessage(content=SYSTEM_PROMPT), HumanMessage(content=prompt)]
        try:
            llm = self._client(temp)
            if json_mode:
                llm = llm.bind(response_format={"type": "json_object"})
            result = await llm.ainvoke(messages)
        except UpstreamError:
            raise
        except Exception as exc:
            logger.warning("provider call failed model=%s: %s", self.model, exc)
            raise UpstreamError.from_exception(exc) from exc
        content = getattr(result, "content", None)
        if isinstance(content, list):
            # content blocks: keep text parts only
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part) for part in content
            )
        return (content or "").strip()
