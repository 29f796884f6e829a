"""Best-effort conversation logging."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from boat_rag.retrieval.datastore import Datastore
from boat_rag.types import Question, Reference, StructuredAnswer

logger = logging.getLogger(__name__)


def confidence_from_references(references: list[Reference], *, top: int = 3) -> float:
    """Mean of the best ``top`` reference scores, each clipped to [0, 1]."""
    if not references:
        return 0.0
    scores = sorted((min(1.0, max(0.0, ref.score)) for ref in references), reverse=True)[:top]
    return round(sum(scores) / len(scores), 4)


class ConversationSink:
    """Writes one conversation row per answer; failures are logged, never raised."""

    def __init__(self, datastore: Datastore | None, *, table: str, enabled: bool = True) -> None:
        self.datastore = datastore
        self.table = table
        self.enabled = enabled

    async def record(self, question: Question, answer: StructuredAnswer) -> bool:
        if not self.enabled or self.datastore is None:
            return False
        references = answer.raw.references
        row = {
            "boat_id": question.tenant_id,
            "request_id": question.request_id,
            "user_question": question.text,
            "ai_response": answer.raw.text,
            "confidence_score": confidence_from_references(references),
            "sources_used": [ref.model_dump(exclude_none=True) for ref in references],
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self.datastore.insert(self.table, row)
        except Exception as exc:
            logger.warning("Conversation persist failed: %s", exc)
            return False
        return True
