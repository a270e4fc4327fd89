"""
Geofence Data Model

Polygons are [latitude, longitude] vertex lists, closed implicitly. Tests are
planar in degree space; no geodesic correction is applied.
"""
import json
import logging
from pathlib import Path
from typing import List, Tuple, Union

from pydantic import BaseModel, ConfigDict, field_validator

from fleetwatch.models.vessel import Position

logger = logging.getLogger(__name__)

# Degrees; distances this small count as "on the edge"
EDGE_TOLERANCE = 1e-9

Vertex = Tuple[float, float]


class Geofence(BaseModel):
    """Named polygonal region"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    polygon: Tuple[Vertex, ...]

    @field_validator("polygon")
    @classmethod
    def check_polygon(cls, polygon):
        if len(polygon) < 3:
            raise ValueError("geofence polygon needs at least 3 vertices")
        for lat, lon in polygon:
            if not -90 <= lat <= 90 or not -180 <= lon <= 180:
                raise ValueError(f"geofence vertex out of range: ({lat}, {lon})")
        return polygon

    def contains(self, position: Position) -> bool:
        """Point-in-polygon test; points on an edge or vertex count as inside"""
        return point_in_polygon(position.latitude, position.longitude, self.polygon)


def _on_segment(lat: float, lon: float, a: Vertex, b: Vertex) -> bool:
    (alat, alon), (blat, blon) = a, b
    cross = (blat - alat) * (lon - alon) - (blon - alon) * (lat - alat)
    if abs(cross) > EDGE_TOLERANCE:
        return False
    return (
        min(alat, blat) - EDGE_TOLERANCE <= lat <= max(alat, blat) + EDGE_TOLERANCE
        and min(alon, blon) - EDGE_TOLERANCE <= lon <= max(alon, blon) + EDGE_TOLERANCE
    )


def point_in_polygon(lat: float, lon: float, polygon) -> bool:
    """Ray-casting test with an explicit edge check first"""
    n = len(polygon)
    if n < 3:
        return False

    inside = False
    j = n - 1
    for i in range(n):
        if _on_segment(lat, lon, polygon[j], polygon[i]):
            return True
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        if ((yi > lon) != (yj > lon)) and \
           (lat < (xj - xi) * (lon - yi) / (yj - yi) + xi):
            inside = not inside
        j = i
    return inside


def load_geofences(path: Union[str, Path]) -> List[Geofence]:
    """Load geofences from a JSON file holding a list of {id, name, polygon}"""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    geofences = [Geofence.model_validate(item) for item in raw]
    logger.info(f"Loaded {len(geofences)} geofences from {path}")
    return geofences
