"""Snapshot decoding: raw outages.json bytes into Outage models."""

from typing import List

from pydantic import TypeAdapter, ValidationError

from outage_tracker.errors import DecodeError
from outage_tracker.models.outage import Outage

_SNAPSHOT = TypeAdapter(List[Outage])


def decode_snapshot(content: bytes) -> List[Outage]:
    """Decode one snapshot. Anything but a JSON array of outages is a DecodeError."""
    try:
        return _SNAPSHOT.validate_json(content)
    except ValidationError as exc:
        raise DecodeError(f"decoding outages: {exc}") from exc
