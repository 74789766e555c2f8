"""DTOs for the dispatch HTTP surface."""

from .delivery_dto import (
    AddressDTO,
    AdvanceDTO,
    CancelDTO,
    ClaimDTO,
    CompleteDTO,
    ContactDTO,
    CoordinatesDTO,
    CreateDeliveryDTO,
    PackageDTO,
    SweepDTO,
)

__all__ = [
    "AddressDTO",
    "AdvanceDTO",
    "CancelDTO",
    "ClaimDTO",
    "CompleteDTO",
    "ContactDTO",
    "CoordinatesDTO",
    "CreateDeliveryDTO",
    "PackageDTO",
    "SweepDTO",
]
