"""Rule-based intent classification with an optional model fallback."""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_INTENT = "generic"
IntentFallback = Callable[[str], Awaitable[str | None]]


@dataclass(slots=True, frozen=True)
class IntentRule:
    """Matches when every ``all_patterns`` regex and at least one ``any_patterns`` regex hit."""

    intent: str
    all_patterns: tuple[str, ...] = ()
    any_patterns: tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        if not self.all_patterns and not self.any_patterns:
            return False
        if not all(re.search(pattern, text, re.IGNORECASE) for pattern in self.all_patterns):
            return False
        return not self.any_patterns or any(
            re.search(pattern, text, re.IGNORECASE) for pattern in self.any_patterns
        )


DEFAULT_RULES: tuple[IntentRule, ...] = (
    IntentRule(
        "inventory",
        all_patterns=(r"\b(what|which)\b",),
        any_patterns=(r"\b(do|did) (i|we) have\b", r"\binstalled\b", r"\bon ?board\b", r"\bfitted\b", r"\bon (my|the|our) boat\b"),
    ),
    IntentRule(
        "troubleshooting",
        any_patterns=(
            r"\b(won'?t|doesn'?t|isn'?t|not) (start|work|working|run|running|charge|charging|pump|pumping)\b",
            r"\b(fault|error|alarm|leak(s|ing)?|overheat(s|ing)?|noise|broken|troubleshoot\w*)\b",
        ),
    ),
    IntentRule(
        "maintenance",
        any_patterns=(
            r"\b(maintain|maintenance|service|servicing|replace|replacing|change|clean|flush|winteri[sz]e)\b",
            r"\b(schedule|interval|filter|impeller|anode|oil)\b",
        ),
    ),
    IntentRule(
        "specs",
        any_patterns=(r"\b(specs?|specification|capacity|rating|torque|voltage|amps?|dimensions?|weight)\b",),
    ),
    IntentRule(
        "parts",
        any_patterns=(r"\bpart (number|no)\b", r"\bp/n\b", r"\bspares?\b", r"\breplacement part\b"),
    ),
)


class IntentClassifier:
    """First matching rule wins; otherwise ask the fallback, then default."""

    def __init__(
        self,
        rules: tuple[IntentRule, ...] = DEFAULT_RULES,
        *,
        fallback: IntentFallback | None = None,
    ) -> None:
        self.rules = rules
        self.fallback = fallback

    def match(self, question: str) -> str | None:
        text = (question or "").lower()
        for rule in self.rules:
            if rule.matches(text):
                return rule.intent
        return None

    async def classify(self, question: str) -> str:
        intent = self.match(question)
        if intent is not None:
            return intent
        if self.fallback is not None:
            try:
                label = await self.fallback(question)
            except Exception as exc:
                logger.info("Intent fallback failed: %s", exc)
                label = None
            if label:
                return _slug(label)
        return DEFAULT_INTENT


def completion_intent_fallback(complete: Callable[..., Awaitable[str]], labels: list[str]) -> IntentFallback:
    """Build a fallback that asks a completion provider for one of ``labels``."""
    allowed = set(labels)

    async def _classify(question: str) -> str | None:
        reply = await complete(
            system="You label boat maintenance questions. Reply with one label only.",
            prompt=(
                f"Labels: {', '.join(labels)}. If unsure, reply {DEFAULT_INTENT}.\n"
                f'Question: "{question}"'
            ),
        )
        label = _slug(reply)
        return label if label in allowed else None

    return _classify


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9_]+", "_", str(value).strip().lower()).strip("_") or DEFAULT_INTENT
