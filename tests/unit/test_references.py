from boat_rag.agent.references import FALLBACK_COUNT, filter_used, reference_keys
from boat_rag.types import Reference


def _ref(idx: int, **fields: str) -> Reference:
    return Reference(id=f"ref-{idx}", source="asset", score=1.0, **fields)


def test_reference_keys_combine_manufacturer_and_description() -> None:
    ref = _ref(1, manufacturer="Garmin", description="GPS display", model_key="GPSMAP8610")

    assert reference_keys(ref) == ["gpsmap8610", "garmin gps display"]


def test_filter_used_keeps_mentioned_references() -> None:
    gps = _ref(1, manufacturer="Garmin", description="GPS display")
    watermaker = _ref(2, model_key="newport400")

    used = filter_used("Your Garmin GPS display is at the helm.", [gps, watermaker])

    assert used == [gps]


def test_filter_used_falls_back_to_leading_references() -> None:
    refs = [_ref(idx, title=f"Manual {idx}") for idx in range(10)]

    used = filter_used("Nothing relevant here.", refs)

    assert used == refs[:FALLBACK_COUNT]
    assert filter_used("anything", []) == []
