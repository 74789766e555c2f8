"""Pricing zones: configured regions with their own per-vehicle rates."""

import logging
from decimal import Decimal
from pathlib import Path
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.delivery import Address
from core.errors import UnknownZone
from core.money import quantize_money
from core.types import VehicleType, ZoneID

logger = logging.getLogger(__name__)


class ZoneRate(BaseModel):
    """Base price and per-kilometer rate for one vehicle type."""

    model_config = ConfigDict(frozen=True)

    base_price: Decimal = Field(..., ge=0, description="Flat price per delivery")
    price_per_km: Decimal = Field(..., ge=0, description="Price per billable kilometer")

    @field_validator("base_price", "price_per_km", mode="before")
    @classmethod
    def to_cents(cls, v: Any) -> Decimal:
        return quantize_money(v)


class ZoneBounds(BaseModel):
    """Latitude/longitude box used when the city name does not match."""

    model_config = ConfigDict(frozen=True)

    min_lat: float = Field(..., ge=-90.0, le=90.0)
    max_lat: float = Field(..., ge=-90.0, le=90.0)
    min_lng: float = Field(..., ge=-180.0, le=180.0)
    max_lng: float = Field(..., ge=-180.0, le=180.0)

    @model_validator(mode="after")
    def check_order(self) -> "ZoneBounds":
        if self.min_lat > self.max_lat or self.min_lng > self.max_lng:
            raise ValueError("Zone bounds minimum must not exceed maximum")
        return self

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


class Zone(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = ""
    areas: list[str] = Field(default_factory=list, description="City names served by the zone")
    bounds: ZoneBounds | None = None
    rates: dict[VehicleType, ZoneRate]

    @property
    def zone_id(self) -> ZoneID:
        return ZoneID(self.id)

    def covers_city(self, city: str) -> bool:
        needle = city.strip().casefold()
        return any(area.strip().casefold() == needle for area in self.areas)

    def rate(self, vehicle_type: VehicleType) -> ZoneRate:
        try:
            return self.rates[vehicle_type]
        except KeyError:
            raise UnknownZone(
                f"Zone {self.id} has no rate for vehicle type {vehicle_type.value}"
            ) from None


class ZoneTable(BaseModel):
    """Ordered zone list; the first match wins."""

    model_config = ConfigDict(frozen=True)

    zones: list[Zone] = Field(..., min_length=1)

    @field_validator("zones")
    @classmethod
    def unique_ids(cls, v: list[Zone]) -> list[Zone]:
        ids = [z.id for z in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Zone ids must be unique")
        return v

    def get(self, zone_id: str) -> Zone | None:
        return next((z for z in self.zones if z.id == zone_id), None)

    def resolve(self, address: Address) -> Zone:
        """Find the zone serving an address: city name first, then coordinates.

        Raises:
            UnknownZone: no zone matches
        """
        for zone in self.zones:
            if zone.covers_city(address.city):
                return zone
        if address.coordinates is not None:
            lat, lng = address.coordinates.lat, address.coordinates.lng
            for zone in self.zones:
                if zone.bounds is not None and zone.bounds.contains(lat, lng):
                    return zone
        raise UnknownZone(f"No pricing zone serves {address.label()}")


def _rates(
    motorcycle: tuple[str, str],
    car: tuple[str, str],
    van: tuple[str, str],
    truck: tuple[str, str],
) -> dict[VehicleType, ZoneRate]:
    pairs = {
        VehicleType.MOTORCYCLE: motorcycle,
        VehicleType.CAR: car,
        VehicleType.VAN: van,
        VehicleType.TRUCK: truck,
    }
    return {
        vehicle: ZoneRate(base_price=Decimal(base), price_per_km=Decimal(per_km))
        for vehicle, (base, per_km) in pairs.items()
    }


DEFAULT_ZONES = ZoneTable(
    zones=[
        Zone(
            id="center",
            name="Center",
            areas=["Tel Aviv", "Ramat Gan", "Givatayim", "Bnei Brak", "Holon", "Bat Yam"],
            bounds=ZoneBounds(min_lat=31.95, max_lat=32.15, min_lng=34.70, max_lng=34.90),
            rates=_rates(("70", "2.5"), ("75", "2.5"), ("120", "3"), ("200", "4")),
        ),
        Zone(
            id="sharon",
            name="Sharon",
            areas=["Herzliya", "Ra'anana", "Kfar Saba", "Netanya", "Hod HaSharon"],
            bounds=ZoneBounds(min_lat=32.15, max_lat=32.40, min_lng=34.80, max_lng=35.00),
            rates=_rates(("75", "3"), ("80", "3"), ("130", "3.5"), ("210", "4.5")),
        ),
        Zone(
            id="jerusalem",
            name="Jerusalem",
            areas=["Jerusalem", "Mevaseret Zion", "Beit Shemesh"],
            bounds=ZoneBounds(min_lat=31.70, max_lat=31.90, min_lng=35.05, max_lng=35.30),
            rates=_rates(("80", "3"), ("85", "3"), ("140", "3.5"), ("220", "5")),
        ),
    ]
)


def load_zone_table(path: str | Path) -> ZoneTable:
    """Load a zone table from a JSON file shaped like ``{"zones": [...]}``."""
    data = orjson.loads(Path(path).read_bytes())
    table = ZoneTable.model_validate(data)
    logger.info(f"Loaded {len(table.zones)} pricing zones from {path}")
    return table
