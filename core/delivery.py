"""Delivery data structures.

A ``Delivery`` is an immutable snapshot. Every change produces a new record
through the lifecycle state machine, and only the registry persists it.
"""

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from decimal import Decimal
from typing import Any

from core.geo import Coordinates
from core.money import to_decimal
from core.types import (
    ASSIGNED_STATUSES,
    TERMINAL_STATUSES,
    CourierID,
    DeliveryID,
    DeliveryStatus,
    DistanceSource,
    OrderNumber,
    Priority,
    VehicleType,
    ZoneID,
)


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt_from_str(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class Address:
    """Pickup or dropoff location."""

    street: str
    city: str
    coordinates: Coordinates | None = None

    def label(self) -> str:
        return f"{self.street}, {self.city}" if self.street else self.city

    def to_dict(self) -> dict[str, Any]:
        return {
            "street": self.street,
            "city": self.city,
            "coordinates": self.coordinates.to_dict() if self.coordinates else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Address":
        coords = data.get("coordinates")
        return cls(
            street=data.get("street", ""),
            city=data["city"],
            coordinates=Coordinates.from_dict(coords) if coords else None,
        )


@dataclass(frozen=True)
class Contact:
    """Person at one end of a delivery."""

    name: str
    phone: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Contact":
        return cls(name=data.get("name", ""), phone=data.get("phone"))


@dataclass(frozen=True)
class PackageDetails:
    """Physical attributes of what is being delivered."""

    package_type: str = "parcel"
    weight_kg: float | None = None
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PackageDetails":
        return cls(**data)


_MONEY_FIELDS = (
    "base_price",
    "price_per_km",
    "distance_km",
    "distance_fee",
    "night_surcharge",
    "final_price",
    "vat_rate",
    "vat",
    "courier_share",
    "courier_earnings",
    "company_earnings",
)


@dataclass(frozen=True)
class PricingBreakdown:
    """Price of a delivery, fixed before publication.

    Invariants (exact, decimal arithmetic):
        final_price == base_price + distance_fee + night_surcharge
        final_price * (1 + vat_rate) == final_price + vat
        courier_earnings + company_earnings == final_price
    """

    base_price: Decimal
    price_per_km: Decimal
    distance_km: Decimal
    distance_fee: Decimal
    night_surcharge: Decimal
    final_price: Decimal
    vat_rate: Decimal
    vat: Decimal
    courier_share: Decimal
    courier_earnings: Decimal
    company_earnings: Decimal
    pickup_zone: ZoneID
    dropoff_zone: ZoneID
    distance_source: DistanceSource
    estimated_minutes: int = 0

    @property
    def gross_price(self) -> Decimal:
        """Price the requester pays, VAT included."""
        return self.final_price + self.vat

    @property
    def is_cross_zone(self) -> bool:
        return self.pickup_zone != self.dropoff_zone

    def check_invariants(self) -> None:
        """Raise ValueError if the additive identities do not hold exactly."""
        if self.final_price != self.base_price + self.distance_fee + self.night_surcharge:
            raise ValueError("final_price must equal base_price + distance_fee + night_surcharge")
        if self.final_price * (1 + self.vat_rate) != self.final_price + self.vat:
            raise ValueError("vat must be additive on top of final_price")
        if self.courier_earnings + self.company_earnings != self.final_price:
            raise ValueError("courier and company earnings must sum to final_price")

    def to_dict(self) -> dict[str, Any]:
        """Serialize breakdown; decimals become strings to keep them exact."""
        data: dict[str, Any] = {name: str(getattr(self, name)) for name in _MONEY_FIELDS}
        data["pickup_zone"] = str(self.pickup_zone)
        data["dropoff_zone"] = str(self.dropoff_zone)
        data["distance_source"] = self.distance_source.value
        data["estimated_minutes"] = self.estimated_minutes
        data["gross_price"] = str(self.gross_price)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PricingBreakdown":
        kwargs: dict[str, Any] = {name: to_decimal(data[name]) for name in _MONEY_FIELDS}
        return cls(
            **kwargs,
            pickup_zone=ZoneID(data["pickup_zone"]),
            dropoff_zone=ZoneID(data["dropoff_zone"]),
            distance_source=DistanceSource(data["distance_source"]),
            estimated_minutes=int(data.get("estimated_minutes", 0)),
        )


# Timeline attribute stamped when a delivery enters each status
STATUS_TIMESTAMP_FIELD: dict[DeliveryStatus, str] = {
    DeliveryStatus.PENDING: "created_at",
    DeliveryStatus.PUBLISHED: "published_at",
    DeliveryStatus.CLAIMED: "claimed_at",
    DeliveryStatus.PICKED_UP: "picked_up_at",
    DeliveryStatus.IN_TRANSIT: "in_transit_at",
    DeliveryStatus.DELIVERED: "delivered_at",
    DeliveryStatus.COMPLETED: "completed_at",
    DeliveryStatus.CANCELLED: "cancelled_at",
}


@dataclass(frozen=True)
class Timeline:
    """Append-only audit trail of transition times."""

    created_at: datetime
    published_at: datetime | None = None
    claimed_at: datetime | None = None
    picked_up_at: datetime | None = None
    in_transit_at: datetime | None = None
    delivered_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    def stamp(self, status: DeliveryStatus, moment: datetime) -> "Timeline":
        """Return a timeline with the status stamp set, keeping any existing value."""
        name = STATUS_TIMESTAMP_FIELD[status]
        if getattr(self, name) is not None:
            return self
        return replace(self, **{name: moment})

    def entered(self, status: DeliveryStatus) -> datetime | None:
        """When the delivery entered the given status."""
        return getattr(self, STATUS_TIMESTAMP_FIELD[status])

    def to_dict(self) -> dict[str, Any]:
        return {f.name: _dt_to_str(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Timeline":
        return cls(**{f.name: _dt_from_str(data.get(f.name)) for f in fields(cls)})


@dataclass(frozen=True)
class DeliveryRequest:
    """Everything a dispatcher supplies to create a delivery."""

    pickup: Address
    dropoff: Address
    sender: Contact
    recipient: Contact
    vehicle_type: VehicleType
    package: PackageDetails = field(default_factory=PackageDetails)
    priority: Priority = Priority.NORMAL
    is_night_delivery: bool | None = None  # None: decide from the creation time
    notes: str = ""


@dataclass(frozen=True)
class Delivery:
    """A single transport job tracked from creation to completion or cancellation."""

    id: DeliveryID
    order_number: OrderNumber
    pickup: Address
    dropoff: Address
    sender: Contact
    recipient: Contact
    vehicle_type: VehicleType
    package: PackageDetails
    priority: Priority
    is_night_delivery: bool
    timeline: Timeline
    pricing: PricingBreakdown | None = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    courier_id: CourierID | None = None
    version: int = 0
    cancellation_reason: str | None = None
    proof_of_delivery: str | None = None
    notes: str = ""

    @classmethod
    def new(
        cls,
        delivery_id: DeliveryID,
        order_number: OrderNumber,
        request: DeliveryRequest,
        pricing: PricingBreakdown,
        is_night_delivery: bool,
        created_at: datetime,
    ) -> "Delivery":
        """Build a pending record from a priced request."""
        return cls(
            id=delivery_id,
            order_number=order_number,
            pickup=request.pickup,
            dropoff=request.dropoff,
            sender=request.sender,
            recipient=request.recipient,
            vehicle_type=request.vehicle_type,
            package=request.package,
            priority=request.priority,
            is_night_delivery=is_night_delivery,
            timeline=Timeline(created_at=created_at),
            pricing=pricing,
            notes=request.notes,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_assigned(self) -> bool:
        """True while a courier holds the delivery."""
        return self.status in ASSIGNED_STATUSES

    @property
    def status_since(self) -> datetime | None:
        """When the delivery entered its current status."""
        return self.timeline.entered(self.status)

    def to_dict(self) -> dict[str, Any]:
        """Serialize delivery to a JSON-safe dictionary."""
        return {
            "id": str(self.id),
            "order_number": str(self.order_number),
            "pickup": self.pickup.to_dict(),
            "dropoff": self.dropoff.to_dict(),
            "sender": self.sender.to_dict(),
            "recipient": self.recipient.to_dict(),
            "vehicle_type": self.vehicle_type.value,
            "package": self.package.to_dict(),
            "priority": self.priority.value,
            "is_night_delivery": self.is_night_delivery,
            "timeline": self.timeline.to_dict(),
            "pricing": self.pricing.to_dict() if self.pricing else None,
            "status": self.status.value,
            "courier_id": str(self.courier_id) if self.courier_id else None,
            "version": self.version,
            "cancellation_reason": self.cancellation_reason,
            "proof_of_delivery": self.proof_of_delivery,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Delivery":
        """Deserialize delivery from dictionary."""
        pricing = data.get("pricing")
        courier_id = data.get("courier_id")
        return cls(
            id=DeliveryID(data["id"]),
            order_number=OrderNumber(data["order_number"]),
            pickup=Address.from_dict(data["pickup"]),
            dropoff=Address.from_dict(data["dropoff"]),
            sender=Contact.from_dict(data["sender"]),
            recipient=Contact.from_dict(data["recipient"]),
            vehicle_type=VehicleType(data["vehicle_type"]),
            package=PackageDetails.from_dict(data.get("package", {})),
            priority=Priority(data.get("priority", Priority.NORMAL.value)),
            is_night_delivery=bool(data.get("is_night_delivery", False)),
            timeline=Timeline.from_dict(data["timeline"]),
            pricing=PricingBreakdown.from_dict(pricing) if pricing else None,
            status=DeliveryStatus(data.get("status", DeliveryStatus.PENDING.value)),
            courier_id=CourierID(courier_id) if courier_id else None,
            version=int(data.get("version", 0)),
            cancellation_reason=data.get("cancellation_reason"),
            proof_of_delivery=data.get("proof_of_delivery"),
            notes=data.get("notes", ""),
        )
