import pytest

from boat_rag.config import Settings
from boat_rag.retrieval.datastore import InMemoryDatastore

ASSETS = [
    {
        "id": "asset-gps",
        "manufacturer": "Garmin",
        "model": "GPSMAP 8610",
        "model_key": "gpsmap8610",
        "system": "navigation",
        "category": "gps chartplotter",
        "tags": ["gps", "chartplotter"],
        "notes": "Mounted at the helm station",
        "description": "Multifunction GPS display",
        "instance_index": 0,
        "search_text": "garmin gpsmap 8610 gps chartplotter navigation multifunction display",
        "manual_urls": ["https://www.garmin.com/manuals/gpsmap8610.pdf"],
    },
    {
        "id": "asset-watermaker",
        "manufacturer": "Spectra",
        "model": "Newport 400",
        "model_key": "newport400",
        "system": "watermaker",
        "category": "watermaker",
        "tags": ["membrane", "reverse osmosis"],
        "notes": "Pickle before winter layup",
        "description": "Reverse osmosis watermaker",
        "instance_index": 0,
        "search_text": "spectra newport 400 watermaker membrane reverse osmosis",
    },
    {
        "id": "asset-pump",
        "manufacturer": "Jabsco",
        "model": "Par-Max 4",
        "model_key": "parmax4",
        "system": "freshwater",
        "category": "water pump",
        "tags": ["pump"],
        "notes": "",
        "description": "Freshwater pressure pump",
        "instance_index": 1,
        "search_text": "jabsco par-max 4 freshwater pressure pump",
    },
]

PLAYBOOKS = [
    {
        "id": "pb-watermaker-filter",
        "archetype_key": "watermaker_prefilter",
        "title": "Watermaker prefilter change",
        "summary": "Replace the watermaker prefilter cartridges every 100 hours.",
        "steps": ["Shut down the watermaker", "hidden step: open the filter housing", "Fit new cartridges"],
        "safety": ["Relieve pressure before opening the housing"],
        "matchers": ["watermaker", "prefilter"],
        "triggers": ["filter"],
        "ref_domains": ["spectrawatermakers.com"],
        "updated_at": "2024-05-01T00:00:00+00:00",
    },
    {
        "id": "pb-pump-service",
        "archetype_key": "freshwater_pump",
        "title": "Freshwater pump service",
        "summary": "Clean the pump strainer and check the pressure switch.",
        "steps": "1. Isolate power\n2. Clean strainer\n3. Test pressure switch",
        "safety": "Isolate the breaker first",
        "matchers": ["pump"],
        "triggers": ["pressure"],
        "ref_domains": ["xylem.com"],
        "updated_at": None,
    },
]

SYSTEMS = [
    {"id": "sys-wm", "category": "watermaker", "brand": "Spectra", "model": "Newport 400", "updated_at": "2024-01-02"},
    {"id": "sys-nav", "category": "navigation", "brand": "Garmin", "model": "GPSMAP 8610", "updated_at": "2024-01-01"},
]

KNOWLEDGE = [
    {
        "id": "kn-wm-1",
        "system_id": "sys-wm",
        "knowledge_type": "maintenance",
        "title": "Membrane flush",
        "content": "Flush the membrane with fresh water weekly.\nUse the built-in flush cycle.\nNever use chlorinated water.",
        "updated_at": "2024-03-01",
    },
    {
        "id": "kn-nav-1",
        "system_id": "sys-nav",
        "knowledge_type": "reference",
        "title": "Chart updates",
        "content": "Update charts yearly from the vendor site.",
        "updated_at": "2024-02-01",
    },
]


def make_datastore(**tables: list[dict]) -> InMemoryDatastore:
    store = InMemoryDatastore()
    defaults = {
        "boat_assets": ASSETS,
        "standards_playbooks": PLAYBOOKS,
        "boat_systems": SYSTEMS,
        "boat_knowledge": KNOWLEDGE,
    }
    defaults.update(tables)
    for name, rows in defaults.items():
        store.seed(name, rows)
    return store


@pytest.fixture
def datastore() -> InMemoryDatastore:
    return make_datastore()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        openai_api_key=None,
        serpapi_key=None,
        world_allowlist=[],
    )


@pytest.fixture
def asset_rows() -> list[dict]:
    return [dict(row) for row in ASSETS]


@pytest.fixture
def system_rows() -> list[dict]:
    return [dict(row) for row in SYSTEMS]
