"""
ShipLog — Audience note generator.

Runs the customer, developer and stakeholder prompts concurrently
against one model and joins them in a TaskGroup: the first failure
cancels the others and the whole run raises GenerationError. A partial
document set is never returned.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol

import google.generativeai as genai

from shiplog.errors import GenerationError
from shiplog.generation.prompts import PROMPT_BUILDERS, ChatMessage
from shiplog.models.notes import Audience, GeneratedDocumentSet, StyleConfig
from shiplog.models.release import ChangeSet
from shiplog.utils.logging import logger, step_timer

EMPTY_FALLBACK = {
    Audience.CUSTOMER: "No notable changes in this release.",
    Audience.DEVELOPER: "No notable code changes were found for this release.",
    Audience.STAKEHOLDER: "No significant changes shipped in this release.",
}


@dataclass
class Completion:
    text: str
    tokens: int
    model: str


class TextProvider(Protocol):
    async def complete(
        self,
        messages: list[ChatMessage],
        model: str,
        temperature: float,
    ) -> Completion: ...


class GeminiProvider:
    """Chat-style completions on Google Gemini."""

    def __init__(self, api_key: str, timeout: float = 60.0):
        if api_key:
            genai.configure(api_key=api_key)
        self.api_key = api_key
        self.timeout = timeout

    async def complete(self, messages: list[ChatMessage], model: str, temperature: float) -> Completion:
        if not self.api_key:
            raise GenerationError("GOOGLE_API_KEY is not set")

        system = "\n\n".join(m.content for m in messages if m.role == "system")
        contents = [
            {"role": "model" if m.role == "assistant" else "user", "parts": [m.content]}
            for m in messages
            if m.role != "system"
        ]

        gemini = genai.GenerativeModel(model, system_instruction=system or None)
        response = await gemini.generate_content_async(
            contents,
            generation_config=genai.GenerationConfig(temperature=temperature),
            request_options={"timeout": self.timeout},
        )

        usage = getattr(response, "usage_metadata", None)
        return Completion(
            text=response.text,
            tokens=getattr(usage, "total_token_count", 0) or 0,
            model=model,
        )


class NoteGenerator:
    """Produces the three audience documents for a change-set."""

    def __init__(self, provider: TextProvider, model: str, temperature: float = 0.4):
        self.provider = provider
        self.model = model
        self.temperature = temperature

    async def _generate_one(
        self,
        audience: Audience,
        change_set: ChangeSet,
        style: StyleConfig,
    ) -> Completion:
        messages = PROMPT_BUILDERS[audience](change_set, style)
        try:
            completion = await self.provider.complete(messages, self.model, self.temperature)
        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationError(str(exc) or type(exc).__name__, audience.value.lower()) from exc

        text = completion.text.strip() if completion.text else ""
        if not text:
            logger.warning("  %s notes came back empty; using placeholder", audience.value.lower())
            text = EMPTY_FALLBACK[audience]
        return Completion(text=text, tokens=max(completion.tokens, 0), model=completion.model)

    async def generate(self, change_set: ChangeSet, style: StyleConfig) -> GeneratedDocumentSet:
        with step_timer(f"Generate notes for {change_set.release.tag_name} ({self.model})"):
            try:
                async with asyncio.TaskGroup() as group:
                    tasks = {
                        audience: group.create_task(self._generate_one(audience, change_set, style))
                        for audience in Audience
                    }
            except ExceptionGroup as failures:
                first = failures.exceptions[0]
                logger.error("  Note generation failed: %s", first)
                if isinstance(first, GenerationError):
                    raise first from None
                raise GenerationError(str(first)) from first

            results = {audience: task.result() for audience, task in tasks.items()}
            tokens = sum(r.tokens for r in results.values())
            logger.info("  Generated 3 documents, %d tokens", tokens)

        return GeneratedDocumentSet(
            customer=results[Audience.CUSTOMER].text,
            developer=results[Audience.DEVELOPER].text,
            stakeholder=results[Audience.STAKEHOLDER].text,
            tokens_used=tokens,
            model=self.model,
        )
