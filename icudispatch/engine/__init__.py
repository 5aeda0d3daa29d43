"""
Engines implementing the reservation and dispatch state machines.
"""

from .base import BaseEngine
from .dispatch import DispatchEngine
from .reservation import ReservationEngine
from .inventory import InventoryService
from .reconciliation import Reconciler

__all__ = [
    "BaseEngine",
    "DispatchEngine",
    "ReservationEngine",
    "InventoryService",
    "Reconciler"
]
