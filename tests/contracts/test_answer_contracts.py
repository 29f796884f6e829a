import re

import pytest

from boat_rag.agent.composer import ResponseComposer
from boat_rag.agent.generators import GenerationInput, GenerationOutput, Generator
from boat_rag.agent.policy import HEADINGS
from boat_rag.api.main import build_services
from boat_rag.config import Settings
from boat_rag.retrieval.datastore import InMemoryDatastore
from boat_rag.types import Question, Reference

_HEADING_LINE = re.compile(r"^\*\*(.+)\*\*$", re.M)

MODEL_REPLIES = [
    "Here is everything!\n\n**References**\nmanual\n\n**In a nutshell**\nCheck the impeller.",
    "### Safety\n- Close the seacock\n\n## Step by step\n1. Remove cover\n2. Swap impeller\n\nIn a nutshell:\nSwap it.",
    "**What's next**\nBook service.\n\n**Random**\nnoise\n\n**Tools and Materials**\n- Screwdriver",
    "No headings at all, just a sentence about the Garmin GPSMAP 8610.",
]


class ReplyGenerator(Generator):
    name = "reply"

    def __init__(self, text: str) -> None:
        self.text = text

    async def generate(self, data: GenerationInput) -> GenerationOutput:
        return GenerationOutput(
            text=self.text,
            references=[Reference(id="not-retrieved", source="web", score=5.0)],
        )


def _headings(text: str) -> list[str]:
    return _HEADING_LINE.findall(text)


@pytest.mark.asyncio
@pytest.mark.parametrize("reply", MODEL_REPLIES)
async def test_sections_are_known_unique_and_ordered(
    reply: str, settings: Settings, datastore: InMemoryDatastore
) -> None:
    services = build_services(settings, datastore=datastore)
    composer = ResponseComposer(mixer=services.composer.mixer, generators=[ReplyGenerator(reply)])

    result = await composer.answer(Question(text="What GPS do I have on my boat?"))

    headings = _headings(result.answer.raw.text)
    assert all(heading in HEADINGS for heading in headings)
    assert len(headings) == len(set(headings))
    assert [HEADINGS.index(heading) for heading in headings] == sorted(HEADINGS.index(h) for h in headings)


@pytest.mark.asyncio
@pytest.mark.parametrize("reply", MODEL_REPLIES)
async def test_references_come_from_retrieved_candidates(
    reply: str, settings: Settings, datastore: InMemoryDatastore
) -> None:
    services = build_services(settings, datastore=datastore)
    composer = ResponseComposer(mixer=services.composer.mixer, generators=[ReplyGenerator(reply)])

    result = await composer.answer(Question(text="How do I change the watermaker filter?"))

    candidate_ids = {reference.id for reference in result.mix.references}
    returned = {reference.id for reference in result.answer.raw.references}
    assert returned
    assert returned <= candidate_ids


@pytest.mark.asyncio
@pytest.mark.parametrize("budget", [500, 1500, 6000])
async def test_context_never_exceeds_budget(budget: int, datastore: InMemoryDatastore) -> None:
    notes = [
        {
            "id": f"kn-wm-{idx}",
            "system_id": "sys-wm",
            "knowledge_type": "maintenance",
            "title": f"Watermaker note {idx}",
            "content": "Rinse the watermaker prefilter housing and inspect the O-ring. " * 6,
            "updated_at": f"2024-04-{idx + 1:02d}",
        }
        for idx in range(6)
    ]
    datastore.seed("boat_knowledge", notes)
    settings = Settings(_env_file=None, openai_api_key=None, serpapi_key=None, context_max_chars=budget)
    services = build_services(settings, datastore=datastore)

    result = await services.composer.answer(Question(text="How do I service the watermaker filter?"))

    assert len(result.mix.context_text) <= budget
    assert result.mix.meta["context_chars"] == len(result.mix.context_text)
