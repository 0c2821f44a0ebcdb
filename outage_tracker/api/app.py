"""
Outage Tracker API: read-only FastAPI endpoints over the outage store.

Exposes what ingestion has committed:
- Checkpoint (latest committed observation time)
- Outage summaries, optionally only active ones
- Per-outage event history

Readers only ever see fully committed snapshots.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from outage_tracker.models.tracking import OutageSummary
from outage_tracker.store.store import OutageStore


# --- Response Models ---

class CheckpointResponse(BaseModel):
    checkpoint: Optional[datetime] = None


class EventResponse(BaseModel):
    observed_at: datetime
    event_name: str
    source_id: Optional[str] = None
    cause: Optional[str] = None
    cust_aff: Optional[int] = None
    start: Optional[datetime] = None
    etr: Optional[datetime] = None


# --- Application Factory ---

def create_app(store: Optional[OutageStore] = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Outage Tracker API",
        description="Outage lifecycle history reconstructed from published snapshots",
        version="0.1.0",
    )

    st = store or OutageStore()
    st.init()
    app.state.store = st

    @app.get("/health")
    def health():
        return {"status": "ok", "outages": st.count()}

    @app.get("/checkpoint", response_model=CheckpointResponse)
    def checkpoint():
        """Latest observation time durably committed."""
        return CheckpointResponse(checkpoint=st.checkpoint())

    @app.get("/outages", response_model=List[OutageSummary])
    def list_outages(active: bool = False, limit: Optional[int] = None):
        """Outage summaries, only unresolved ones when active=true."""
        return st.summaries(active_only=active, limit=limit)

    @app.get("/outages/{outage_id}", response_model=OutageSummary)
    def get_outage(outage_id: int):
        summary = st.summary(outage_id)
        if summary is None:
            raise HTTPException(404, "Outage not found")
        return summary

    @app.get("/outages/{outage_id}/events", response_model=List[EventResponse])
    def get_outage_events(outage_id: int):
        """Full lifecycle of one outage, oldest first."""
        rows = st.events(outage_id)
        if not rows:
            raise HTTPException(404, "Outage not found")
        return [
            EventResponse(
                observed_at=r["observed_at"],
                event_name=r["event_name"],
                source_id=r["source_id"],
                cause=r["cause"],
                cust_aff=r["cust_aff"],
                start=r["start"],
                etr=r["etr"],
            )
            for r in rows
        ]

    return app
