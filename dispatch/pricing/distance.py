"""Distance providers used by the pricing engine."""

from decimal import Decimal
from typing import Protocol

from core.delivery import Address
from core.errors import GeocodingUnavailable
from core.geo import haversine_km
from core.money import quantize_money


class DistanceProvider(Protocol):
    """Road distance between two addresses.

    Implementations raise ``DistanceUnavailable`` or ``TimeoutError`` when they
    cannot answer within ``timeout_s``.
    """

    def distance_km(self, origin: Address, destination: Address, timeout_s: float) -> float: ...


class HaversineDistanceProvider:
    """Great-circle distance between address coordinates, rounded to 0.01 km.

    Deterministic: the same coordinates always produce the same distance, so
    prices computed through this fallback are reproducible.
    """

    def distance_km(self, origin: Address, destination: Address, timeout_s: float = 0.0) -> float:
        return float(self.distance_decimal(origin, destination))

    def distance_decimal(self, origin: Address, destination: Address) -> Decimal:
        if origin.coordinates is None or destination.coordinates is None:
            missing = origin if origin.coordinates is None else destination
            raise GeocodingUnavailable(f"No coordinates for {missing.label()}")
        return quantize_money(haversine_km(origin.coordinates, destination.coordinates))
