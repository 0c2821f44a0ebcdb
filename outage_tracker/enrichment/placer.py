"""
Placer: attaches coordinates and place names to outages.

The first encoded position of each outage is decoded into lon/lat, then
matched against a Who's On First FeatureCollection: a containing county
sets `county`, the smallest containing neighbourhood sets `neighborhood`.
Point lookups are memoised per coordinate.
"""

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import polyline
from shapely.errors import ShapelyError
from shapely.geometry import MultiPolygon, Point, Polygon, shape
from shapely.geometry.base import BaseGeometry

from outage_tracker.errors import DecodeError, EnrichmentError
from outage_tracker.models.outage import Outage

logger = logging.getLogger(__name__)

COUNTY = "county"
NEIGHBOURHOOD = "neighbourhood"  # Who's On First spelling


@dataclass(frozen=True)
class Place:
    name: str
    placetype: str
    geometry: BaseGeometry

    def contains(self, point: Point) -> bool:
        if isinstance(self.geometry, Point):
            return self.geometry.equals(point)
        if isinstance(self.geometry, (Polygon, MultiPolygon)):
            return self.geometry.contains(point)
        return False


def load_places(path: Optional[str]) -> List[Place]:
    """Read places from a GeoJSON FeatureCollection file. No path, no places."""
    if not path:
        return []
    try:
        collection = json.loads(Path(path).read_text())
    except (OSError, ValueError) as exc:
        raise EnrichmentError(f"loading places from {path}: {exc}") from exc
    if not isinstance(collection, dict):
        raise EnrichmentError(f"loading places from {path}: not a FeatureCollection")
    return places_from_features(collection.get("features") or [])


def places_from_features(features: List[dict]) -> List[Place]:
    places = []
    for feature in features:
        props = feature.get("properties") or {}
        try:
            geometry = shape(feature["geometry"])
        except (KeyError, TypeError, ValueError, ShapelyError) as exc:
            raise EnrichmentError(f"place {props.get('wof:name')!r} has bad geometry: {exc}") from exc
        places.append(Place(
            name=props.get("wof:name", ""),
            placetype=props.get("wof:placetype", ""),
            geometry=geometry,
        ))
    return places


def decode_position(encoded: str) -> Tuple[float, float]:
    """Decode the first point of an encoded polyline. Returns (lon, lat)."""
    try:
        points = polyline.decode(encoded)
    except (IndexError, ValueError, TypeError) as exc:
        raise DecodeError(f"decoding geom.p {encoded!r}: {exc}") from exc
    if not points:
        raise DecodeError(f"decoding geom.p {encoded!r}: no points")
    lat, lon = points[0]
    return lon, lat


class Placer:
    """
    Snapshot enricher. Side-effect free apart from its point cache, which is
    unbounded unless cache_size is given.
    """

    def __init__(self, places: Optional[List[Place]] = None, cache_size: Optional[int] = None):
        self.places = places or []
        self.cache_size = cache_size
        self._cache: "OrderedDict[Tuple[float, float], List[Place]]" = OrderedDict()

    @property
    def cache_len(self) -> int:
        return len(self._cache)

    def enrich(self, outages: List[Outage]) -> List[Outage]:
        """Return the outages with lon/lat, county and neighborhood filled in."""
        return [self._place(outage) for outage in outages]

    def _place(self, outage: Outage) -> Outage:
        if not outage.geom.p:
            return outage

        lon, lat = decode_position(outage.geom.p[0])
        updates = {"lon": lon, "lat": lat}

        neighbourhood_area = 0.0
        for place in self._lookup(lon, lat):
            if place.placetype == COUNTY:
                updates["county"] = place.name
            elif place.placetype == NEIGHBOURHOOD:
                area = place.geometry.area
                if neighbourhood_area == 0 or area < neighbourhood_area:
                    updates["neighborhood"] = place.name
                    neighbourhood_area = area

        return outage.model_copy(update={"geom": outage.geom.model_copy(update=updates)})

    def _lookup(self, lon: float, lat: float) -> List[Place]:
        key = (lon, lat)
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]

        point = Point(lon, lat)
        try:
            found = [p for p in self.places if p.contains(point)]
        except ShapelyError as exc:
            raise EnrichmentError(f"placing ({lon}, {lat}): {exc}") from exc

        self._cache[key] = found
        if self.cache_size is not None and len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        return found
