"""Error taxonomy shared across the pipeline."""

from __future__ import annotations


class BoatRagError(Exception):
    """Base class for pipeline errors."""


class QuestionValidationError(BoatRagError):
    """The request carries no usable question."""


class SourceUnavailable(BoatRagError):
    """An evidence source's backing collaborator failed or is missing."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class GenerationUnavailable(BoatRagError):
    """A generation strategy produced no usable text."""


class CacheUnavailable(BoatRagError):
    """The answer cache backing store could not be reached."""


class ConfigurationError(BoatRagError):
    """Required configuration is missing or inconsistent at startup."""

    def __init__(self, problems: list[str]) -> None:
        super().__init__("Invalid configuration: " + "; ".join(problems))
        self.problems = problems
