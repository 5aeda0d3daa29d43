"""
Base class for the reservation and dispatch engines.
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from icudispatch.core.errors import AmbulanceNotFound, PatientNotFound, StoreBusy
from icudispatch.core.event_bus import EventBus
from icudispatch.db.store import EntityStore
from icudispatch.models.events import EventType
from icudispatch.models.user import Actor

logger = logging.getLogger(__name__)

T = TypeVar("T")


def plain_id(value: Any) -> Optional[str]:
    """Reduce an entity reference to its bare string id."""
    if value is None:
        return None
    return str(value).strip()


def same_id(left: Any, right: Any) -> bool:
    """Compare two entity references as plain string identities."""
    if left is None or right is None:
        return False
    return plain_id(left) == plain_id(right)


class BaseEngine:
    """
    Shared plumbing for engines.

    Provides:
    - One unit of work (session + transaction) per operation
    - Broadcasting that never fails the operation
    - Actor lookups with role checks
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        event_bus: EventBus,
        name: Optional[str] = None
    ):
        """
        Initialize the engine.

        Args:
            session_factory: Factory producing database sessions
            event_bus: Bus the engine publishes transitions to
            name: Optional custom name used as the event source
        """
        self.session_factory = session_factory
        self.event_bus = event_bus
        self.name = name or self.__class__.__name__

        logger.info(f"Engine initialized: {self.name}")

    @contextmanager
    def unit_of_work(self) -> Iterator[EntityStore]:
        """Run the enclosed block in one transaction; roll back on any error."""
        session: Session = self.session_factory()
        try:
            yield EntityStore(session)
            session.commit()
        except OperationalError as e:
            session.rollback()
            if _is_lock_timeout(e):
                logger.warning(f"{self.name} gave up waiting for a database lock: {e.orig}")
                raise StoreBusy(engine=self.name) from e
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def transact(self, work: Callable[[EntityStore], T]) -> T:
        """
        Run ``work(store)`` in one unit of work on a worker thread.

        Lock waits can last up to the busy timeout, so the event loop keeps
        serving other requests and broadcasts meanwhile.
        """
        return await asyncio.to_thread(self._transact_sync, work)

    def _transact_sync(self, work: Callable[[EntityStore], T]) -> T:
        with self.unit_of_work() as store:
            return work(store)

    async def _broadcast(
        self,
        event_type: EventType,
        payload: Dict[str, Any],
        audience: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> None:
        """Publish a transition. Failures are logged, never raised."""
        try:
            await self.event_bus.emit(
                event_type,
                payload,
                source=self.name,
                audience=audience,
                correlation_id=correlation_id
            )
        except Exception as e:
            logger.error(f"{self.name} failed to broadcast {event_type.value}: {e}", exc_info=True)

    @staticmethod
    def _require_patient(store: EntityStore, patient_id: str) -> Actor:
        actor = store.get_actor(patient_id)
        if actor is None or not actor.is_patient:
            raise PatientNotFound(patient_id=patient_id)
        return actor

    @staticmethod
    def _require_ambulance(store: EntityStore, ambulance_id: str) -> Actor:
        actor = store.get_actor(ambulance_id)
        if actor is None or not actor.is_ambulance:
            raise AmbulanceNotFound(ambulance_id=ambulance_id)
        return actor

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name}>"


def _is_lock_timeout(error: OperationalError) -> bool:
    message = str(error.orig).lower()
    return "locked" in message or "busy" in message
