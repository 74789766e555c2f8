"""Courier directory port and in-memory adapter."""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal

from core.courier import Courier
from core.errors import CourierNotFound
from core.types import CourierID, VehicleType

logger = logging.getLogger(__name__)


class CourierDirectory(ABC):
    """Read access to couriers plus the counters the dispatch core maintains."""

    @abstractmethod
    def get_courier(self, courier_id: CourierID) -> Courier | None:
        pass

    @abstractmethod
    def list_eligible(self, vehicle_type: VehicleType, now: datetime) -> list[Courier]:
        """Active, available, unblocked couriers driving ``vehicle_type``."""

    @abstractmethod
    def record_completion(self, courier_id: CourierID, earnings: Decimal) -> None:
        """Count a completed delivery and add the courier's earnings."""

    @abstractmethod
    def record_cancellation(self, courier_id: CourierID) -> None:
        """Count a cancelled delivery the courier held."""

    def require(self, courier_id: CourierID) -> Courier:
        courier = self.get_courier(courier_id)
        if courier is None:
            raise CourierNotFound(f"Courier {courier_id} not found")
        return courier


class InMemoryCourierDirectory(CourierDirectory):
    def __init__(self, couriers: list[Courier] | None = None) -> None:
        self._lock = threading.Lock()
        self._couriers: dict[CourierID, Courier] = {}
        for courier in couriers or []:
            self.add(courier)

    def add(self, courier: Courier) -> None:
        with self._lock:
            self._couriers[courier.id] = courier

    def all(self) -> list[Courier]:
        with self._lock:
            return sorted(self._couriers.values(), key=lambda c: c.id)

    def get_courier(self, courier_id: CourierID) -> Courier | None:
        return self._couriers.get(courier_id)

    def list_eligible(self, vehicle_type: VehicleType, now: datetime) -> list[Courier]:
        return [c for c in self.all() if c.is_eligible_for(vehicle_type, now)]

    def record_completion(self, courier_id: CourierID, earnings: Decimal) -> None:
        with self._lock:
            courier = self._couriers.get(courier_id)
            if courier is None:
                raise CourierNotFound(f"Courier {courier_id} not found")
            courier.total_deliveries += 1
            courier.completed_deliveries += 1
            courier.total_earnings += earnings
        logger.info(f"Courier {courier_id} completed a delivery, earned {earnings}")

    def record_cancellation(self, courier_id: CourierID) -> None:
        with self._lock:
            courier = self._couriers.get(courier_id)
            if courier is None:
                raise CourierNotFound(f"Courier {courier_id} not found")
            courier.total_deliveries += 1
            courier.cancelled_deliveries += 1
        logger.info(f"Courier {courier_id} lost a delivery to cancellation")
