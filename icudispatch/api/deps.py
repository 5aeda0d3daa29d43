"""
Request dependencies: engine lookup and caller identity.

Authentication lives in front of this service; it forwards the caller's
user id in the ``X-User-Id`` header.
"""

from typing import Callable

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from icudispatch.core.errors import ActorNotFound, AuthorizationError
from icudispatch.db.connection import get_db_session
from icudispatch.db.store import EntityStore
from icudispatch.engine import DispatchEngine, InventoryService, ReservationEngine, Reconciler
from icudispatch.models.user import Actor, Role


def get_reservations(request: Request) -> ReservationEngine:
    return request.app.state.reservations


def get_dispatch(request: Request) -> DispatchEngine:
    return request.app.state.dispatch


def get_inventory(request: Request) -> InventoryService:
    return request.app.state.inventory


def get_reconciler(request: Request) -> Reconciler:
    return request.app.state.reconciler


def get_current_actor(
    x_user_id: str = Header(..., alias="X-User-Id"),
    session: Session = Depends(get_db_session)
) -> Actor:
    actor = EntityStore(session).get_actor(x_user_id.strip())
    if actor is None:
        raise ActorNotFound(user_id=x_user_id)
    return actor


def require_roles(*roles: Role) -> Callable[..., Actor]:
    """Dependency factory restricting a route to the given roles."""
    allowed = set(roles)

    def checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed:
            raise AuthorizationError(
                role=actor.role.value,
                allowed=sorted(r.value for r in allowed)
            )
        return actor

    return checker
