"""Generation strategies and completion providers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from langchain_core.prompts import ChatPromptTemplate
from pydantic import BaseModel, Field

from boat_rag.agent.prompt import PromptBuilder, Tone
from boat_rag.errors import GenerationUnavailable
from boat_rag.types import Reference

logger = logging.getLogger(__name__)

_MESSAGES = ChatPromptTemplate.from_messages([("system", "{system}"), ("human", "{prompt}")])


@dataclass(slots=True)
class GenerationInput:
    question: str
    context_text: str
    references: list[Reference]
    tone: Tone
    assets: list[dict[str, Any]] = field(default_factory=list)
    playbooks: list[dict[str, Any]] = field(default_factory=list)
    web_snippets: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class GenerationOutput:
    text: str
    title: str | None = None
    summary: str | None = None
    bullets: list[str] = field(default_factory=list)
    cta: str | None = None
    references: list[Reference] = field(default_factory=list)


class Generator(ABC):
    """One named way of turning evidence into answer text."""

    name: str = "generator"

    @abstractmethod
    async def generate(self, data: GenerationInput) -> GenerationOutput:
        """Return generated output or raise ``GenerationUnavailable``."""


class CompletionProvider(ABC):
    @abstractmethod
    async def complete(self, *, system: str, prompt: str) -> str:
        """Return the model's text reply."""


class ChatModelCompletion(CompletionProvider):
    """Completion through any LangChain chat model (``ChatOpenAI`` in production)."""

    def __init__(self, llm: Any) -> None:
        self.llm = llm
        self._chain = _MESSAGES | llm

    async def complete(self, *, system: str, prompt: str) -> str:
        message = await self._chain.ainvoke({"system": system, "prompt": prompt})
        return _message_text(message)


class OfflineCompletion(CompletionProvider):
    """Deterministic stand-in used when no model is configured.

    Always replies with empty text so callers take their extractive path.
    """

    async def complete(self, *, system: str, prompt: str) -> str:
        del system, prompt
        return ""


class _StructuredReply(BaseModel):
    title: str = ""
    summary: str = ""
    bullets: list[str] = Field(default_factory=list)
    cta: str | None = None
    text: str = Field(default="", description="Markdown answer using the policy sections")
    reference_ids: list[str] = Field(default_factory=list)


class StructuredChatGenerator(Generator):
    """Asks a chat model for the full answer shape via structured output."""

    name = "structured"

    def __init__(self, llm: Any, prompts: PromptBuilder) -> None:
        self.prompts = prompts
        self._chain = _MESSAGES | llm.with_structured_output(_StructuredReply)

    async def generate(self, data: GenerationInput) -> GenerationOutput:
        prompt = self.prompts.build_user_prompt(
            data.question,
            data.context_text,
            tone=data.tone,
            assets=data.assets,
            playbooks=data.playbooks,
            web_snippets=data.web_snippets,
            structured=True,
        )
        try:
            reply = await self._chain.ainvoke({"system": self.prompts.system_prompt, "prompt": prompt})
        except Exception as exc:
            raise GenerationUnavailable(f"structured generation failed: {exc}") from exc
        if isinstance(reply, dict):
            reply = _StructuredReply.model_validate(reply)
        if reply is None or not reply.text.strip():
            raise GenerationUnavailable("structured generation returned no text")

        by_id = {reference.id: reference for reference in data.references}
        return GenerationOutput(
            text=reply.text,
            title=reply.title or None,
            summary=reply.summary or None,
            bullets=[bullet for bullet in reply.bullets if bullet.strip()],
            cta=reply.cta or None,
            references=[by_id[ref_id] for ref_id in reply.reference_ids if ref_id in by_id],
        )


class CompletionGenerator(Generator):
    """Plain-text completion; the caller enforces the section policy."""

    name = "completion"

    def __init__(self, provider: CompletionProvider, prompts: PromptBuilder) -> None:
        self.provider = provider
        self.prompts = prompts

    async def generate(self, data: GenerationInput) -> GenerationOutput:
        prompt = self.prompts.build_user_prompt(
            data.question,
            data.context_text,
            tone=data.tone,
            assets=data.assets,
            playbooks=data.playbooks,
            web_snippets=data.web_snippets,
        )
        try:
            text = await self.provider.complete(system=self.prompts.system_prompt, prompt=prompt)
        except Exception as exc:
            raise GenerationUnavailable(f"completion failed: {exc}") from exc
        if not text or not text.strip():
            raise GenerationUnavailable("completion returned no text")
        return GenerationOutput(text=text)


def create_chat_model(*, api_key: str | None, model: str) -> Any:
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=model, temperature=0.2, api_key=api_key)


def build_generators(llm: Any, prompts: PromptBuilder) -> tuple[list[Generator], CompletionProvider]:
    """Strategies in priority order plus the completion provider they share."""
    if llm is None:
        provider: CompletionProvider = OfflineCompletion()
        return [CompletionGenerator(provider, prompts)], provider
    provider = ChatModelCompletion(llm)
    return [StructuredChatGenerator(llm, prompts), CompletionGenerator(provider, prompts)], provider


def _message_text(message: Any) -> str:
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts).strip()
    return str(content or "").strip()
