"""Courier data structures."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from core.geo import Coordinates
from core.money import ZERO, to_decimal
from core.types import CourierID, VehicleType


@dataclass
class Courier:
    """Independent courier who pulls work from the published queue.

    Counters are owned by the courier directory; the dispatch core only
    increments them when a delivery completes or an assigned delivery is cancelled.
    """

    id: CourierID
    name: str
    vehicle_type: VehicleType
    phone: str | None = None
    is_active: bool = True
    is_available: bool = True
    coordinates: Coordinates | None = None
    rating: float = 0.0  # 0..5
    completed_deliveries: int = 0
    total_deliveries: int = 0
    cancelled_deliveries: int = 0
    total_earnings: Decimal = field(default_factory=lambda: ZERO)
    blocked_until: datetime | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.rating <= 5.0:
            raise ValueError(f"Courier rating must be within 0..5, got {self.rating}")

    @property
    def completion_rate(self) -> float:
        """Share of accepted deliveries that were completed (0 when none)."""
        if self.total_deliveries <= 0:
            return 0.0
        return min(1.0, self.completed_deliveries / self.total_deliveries)

    def is_blocked(self, now: datetime) -> bool:
        return self.blocked_until is not None and now < self.blocked_until

    def is_eligible_for(self, vehicle_type: VehicleType, now: datetime) -> bool:
        """Check whether this courier may claim a delivery needing ``vehicle_type``."""
        return (
            self.is_active
            and self.is_available
            and self.vehicle_type == vehicle_type
            and not self.is_blocked(now)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "vehicle_type": self.vehicle_type.value,
            "phone": self.phone,
            "is_active": self.is_active,
            "is_available": self.is_available,
            "coordinates": self.coordinates.to_dict() if self.coordinates else None,
            "rating": self.rating,
            "completed_deliveries": self.completed_deliveries,
            "total_deliveries": self.total_deliveries,
            "cancelled_deliveries": self.cancelled_deliveries,
            "total_earnings": str(self.total_earnings),
            "blocked_until": self.blocked_until.isoformat() if self.blocked_until else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Courier":
        coords = data.get("coordinates")
        blocked_until = data.get("blocked_until")
        return cls(
            id=CourierID(data["id"]),
            name=data["name"],
            vehicle_type=VehicleType(data["vehicle_type"]),
            phone=data.get("phone"),
            is_active=bool(data.get("is_active", True)),
            is_available=bool(data.get("is_available", True)),
            coordinates=Coordinates.from_dict(coords) if coords else None,
            rating=float(data.get("rating", 0.0)),
            completed_deliveries=int(data.get("completed_deliveries", 0)),
            total_deliveries=int(data.get("total_deliveries", 0)),
            cancelled_deliveries=int(data.get("cancelled_deliveries", 0)),
            total_earnings=to_decimal(data.get("total_earnings", "0.00")),
            blocked_until=datetime.fromisoformat(blocked_until) if blocked_until else None,
        )
