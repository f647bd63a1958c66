from pathlib import Path

import pytest

from watermap.catalog.models import MonitoredEntity, StatusEvent
from watermap.observability.log import configure_logging


@pytest.fixture(autouse=True, scope="session")
def _route_logs_to_stderr():
    configure_logging(Path(__file__).resolve().parents[1] / "config" / "logging.yaml")


def make_entity(entity_id: str, **overrides) -> MonitoredEntity:
    fields = {
        "entity_id": entity_id,
        "name": f"System {entity_id}",
        "region": "Fulton",
        "locality": "Atlanta",
        "population": 2500,
    }
    fields.update(overrides)
    return MonitoredEntity(**fields)


def make_event(event_id: str, entity_id: str, *, active: bool = True, health_based: bool = False) -> StatusEvent:
    return StatusEvent(event_id=event_id, entity_id=entity_id, active=active, health_based=health_based)
