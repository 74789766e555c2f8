"""DTOs for the delivery HTTP surface."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.delivery import Address, Contact, DeliveryRequest, PackageDetails
from core.geo import Coordinates
from core.types import DeliveryStatus, Priority, VehicleType


class CoordinatesDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)


class AddressDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    street: str = ""
    city: str = Field(..., min_length=1, description="City used for zone lookup")
    coordinates: CoordinatesDTO | None = None

    def to_address(self) -> Address:
        coords = (
            Coordinates(lat=self.coordinates.lat, lng=self.coordinates.lng)
            if self.coordinates
            else None
        )
        return Address(street=self.street, city=self.city, coordinates=coords)


class ContactDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    phone: str | None = Field(default=None, max_length=32)

    @field_validator("phone")
    @classmethod
    def strip_phone(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None


class PackageDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    package_type: str = "parcel"
    weight_kg: float | None = Field(default=None, gt=0.0)
    description: str = ""


class CreateDeliveryDTO(BaseModel):
    """Request body for creating a delivery."""

    model_config = ConfigDict(frozen=True)

    pickup: AddressDTO
    dropoff: AddressDTO
    sender: ContactDTO
    recipient: ContactDTO
    vehicle_type: VehicleType
    package: PackageDTO = Field(default_factory=PackageDTO)
    priority: Priority = Priority.NORMAL
    is_night_delivery: bool | None = Field(
        default=None, description="Force night pricing on or off; derived from the clock when omitted"
    )
    notes: str = Field(default="", max_length=1000)

    def to_request(self) -> DeliveryRequest:
        return DeliveryRequest(
            pickup=self.pickup.to_address(),
            dropoff=self.dropoff.to_address(),
            sender=Contact(name=self.sender.name, phone=self.sender.phone),
            recipient=Contact(name=self.recipient.name, phone=self.recipient.phone),
            vehicle_type=self.vehicle_type,
            package=PackageDetails(
                package_type=self.package.package_type,
                weight_kg=self.package.weight_kg,
                description=self.package.description,
            ),
            priority=self.priority,
            is_night_delivery=self.is_night_delivery,
            notes=self.notes,
        )


class ClaimDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    courier_id: str = Field(..., min_length=1)


class AdvanceDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    courier_id: str = Field(..., min_length=1)
    target_status: DeliveryStatus


class CancelDTO(BaseModel):
    """Cancellation by an operator (or the system)."""

    model_config = ConfigDict(frozen=True)

    operator_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=500)
    as_system: bool = False


class CompleteDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    operator_id: str | None = None
    proof_of_delivery: str | None = Field(default=None, max_length=2000)


class SweepDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    ttl_minutes: int | None = Field(default=None, ge=1)

