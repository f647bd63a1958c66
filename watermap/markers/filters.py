"""Display filters for markers and polygon containment."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from watermap.markers.classify import Classification


class DisplayFilters(BaseModel):
    """Which classifications are shown, and whether density points are produced."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    show_compliant: bool = True
    show_violations: bool = True
    show_critical: bool = True
    show_heatmap: bool = False

    def allows(self, classification: Classification) -> bool:
        if classification is Classification.NORMAL:
            return self.show_compliant
        if classification is Classification.ELEVATED:
            return self.show_violations
        return self.show_critical
