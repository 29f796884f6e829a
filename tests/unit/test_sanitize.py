from boat_rag.retrieval.sanitize import cap_context, clean_chunk, dedup_references
from boat_rag.types import Reference


def test_clean_chunk_strips_page_artifacts() -> None:
    raw = "Check the impeller. 12 | Page\nPage 13 Replace the gas-\nket if worn."

    cleaned = clean_chunk(raw)

    assert "Page" not in cleaned
    assert "gasket" in cleaned
    assert "  " not in cleaned


def test_clean_chunk_keeps_lists_and_paragraphs() -> None:
    raw = "Steps:\n1. Close the seacock\n2. Open the strainer\n\n\n\nAfter that\nrun the engine."

    cleaned = clean_chunk(raw)

    assert "1. Close the seacock\n2. Open the strainer" in cleaned
    assert "\n\n\n" not in cleaned
    assert "After that run the engine." in cleaned


def test_clean_chunk_normalizes_bullets() -> None:
    assert clean_chunk("· one item") == "• one item"


def test_cap_context_prefers_paragraph_break() -> None:
    first = "A" * 300
    second = "B" * 300
    text = f"{first}\n\n{second}"

    capped = cap_context(text, 400, min_break=100)

    assert capped == first


def test_cap_context_short_text_untouched() -> None:
    assert cap_context("short", 100) == "short"


def test_cap_context_never_exceeds_budget() -> None:
    text = " ".join(["word"] * 500)

    capped = cap_context(text, 250)

    assert len(capped) <= 250
    assert not capped.endswith(" ")


def test_dedup_references_by_id() -> None:
    refs = [
        Reference(id="a", source="asset", score=2),
        Reference(id="a", source="asset", score=1),
        Reference(id="b", source="playbook", score=1),
    ]

    assert [ref.id for ref in dedup_references(refs)] == ["a", "b"]


def test_cap_context_uses_latest_boundary() -> None:
    text = "A" * 1300 + "\n\n" + "Check the impeller now. " * 300

    capped = cap_context(text, 6000)

    assert len(capped) > 5900
    assert capped.endswith("now.")


def test_clean_chunk_drops_orphan_bullets() -> None:
    raw = "Inspect the belt.\n\n•\n\n▪\n\n• Replace if cracked."

    assert clean_chunk(raw) == "Inspect the belt.\n\n• Replace if cracked."
