"""
Admin routes: consistency sweep and event history.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from icudispatch.api.deps import get_reconciler, require_roles
from icudispatch.core.errors import ValidationError
from icudispatch.engine import Reconciler
from icudispatch.models.events import EventType
from icudispatch.models.user import Actor, Role

router = APIRouter()


@router.post("/reconcile")
async def reconcile(
    actor: Actor = Depends(require_roles(Role.ADMIN)),
    reconciler: Reconciler = Depends(get_reconciler)
):
    """Run the reconciliation sweep and report what was repaired."""
    report = await reconciler.reconcile()
    return {"success": True, "report": report.to_dict()}


@router.get("/events")
async def recent_events(
    request: Request,
    event_type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    actor: Actor = Depends(require_roles(Role.ADMIN))
):
    """Most recent broadcasts, newest first."""
    wanted = None
    if event_type:
        try:
            wanted = EventType(event_type)
        except ValueError:
            raise ValidationError("Unknown event type", event_type=event_type)
    events = request.app.state.event_bus.get_history(wanted, limit)
    return {"success": True, "events": [e.to_dict() for e in events], "count": len(events)}
