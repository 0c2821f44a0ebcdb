"""Outage: one raw element of a published outages.json snapshot."""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_serializer, field_validator

# Source timestamps carry a compact zone offset: 2021-01-18T22:15:00-0400
SOURCE_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def parse_source_time(value) -> Optional[datetime]:
    """Parse a source timestamp into UTC. Empty string and null mean unset."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif not isinstance(value, str):
        raise ValueError(f"timestamp must be a string, got {type(value).__name__}")
    else:
        try:
            parsed = datetime.strptime(value, SOURCE_TIME_FORMAT)
        except ValueError:
            # Stored state round-trips through ISO 8601.
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class CustomersAffected(BaseModel):
    """Affected customer count, possibly masked by the publisher."""

    model_config = ConfigDict(extra="ignore")

    masked: bool = False
    val: int = 0


class OutageDesc(BaseModel):
    """Descriptive fields of an outage. Clustered reports nest sub-outages."""

    model_config = ConfigDict(extra="ignore")

    cause: str = ""
    cluster: bool = False
    cust_a: CustomersAffected = CustomersAffected()
    n_out: int = 0
    outages: List["OutageDesc"] = []
    etr: Optional[datetime] = None          # Estimated time of restoration
    start: Optional[datetime] = None

    @field_validator("etr", "start", mode="before")
    @classmethod
    def _parse_time(cls, value):
        return parse_source_time(value)

    @field_validator("outages", mode="before")
    @classmethod
    def _null_outages(cls, value):
        return value or []

    @field_serializer("etr", "start")
    def _format_time(self, value: Optional[datetime]) -> Optional[str]:
        if value is None:
            return None
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")


class OutageGeom(BaseModel):
    """Geometric descriptor. `p` holds encoded-polyline positions, `a` area outlines."""

    model_config = ConfigDict(extra="ignore")

    a: List[str] = []
    p: List[str] = []
    lon: float = 0.0
    lat: float = 0.0
    county: str = ""
    neighborhood: str = ""

    @field_validator("a", "p", mode="before")
    @classmethod
    def _null_list(cls, value):
        return value or []


class Outage(BaseModel):
    """
    A raw outage as published. `id` is supplied by the source and is neither
    unique nor stable: the publisher reuses ids for unrelated outages.
    """

    model_config = ConfigDict(extra="ignore")

    desc: OutageDesc = OutageDesc()
    geom: OutageGeom = OutageGeom()
    id: str = ""
    title: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        if value is None:
            return ""
        return str(value)


def identity_key(outage: Outage) -> str:
    """
    Derive the key used to match an outage across snapshots.

    The raw encoded position is preferred over the decoded coordinates since
    float round-tripping is not stable across re-encodings.
    """
    if outage.geom.p:
        return outage.geom.p[0]
    return f"{outage.geom.lon!r},{outage.geom.lat!r}"
