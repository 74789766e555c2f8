"""Delivery pricing."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal

from core.delivery import Address, PricingBreakdown
from core.errors import DistanceUnavailable
from core.money import ZERO, quantize_money, to_decimal
from core.types import DistanceSource, VehicleType

from .distance import DistanceProvider, HaversineDistanceProvider
from .zones import DEFAULT_ZONES, ZoneTable

logger = logging.getLogger(__name__)

# Average speeds for the rough travel time estimate, km/h
CITY_SPEED_KMH = 30
OPEN_ROAD_SPEED_KMH = 50
CITY_RADIUS_KM = 10


def is_night_time(moment: datetime, start_hour: int = 22, end_hour: int = 6) -> bool:
    """Whether ``moment`` falls in the night window (which may wrap midnight)."""
    hour = moment.hour
    if start_hour > end_hour:
        return hour >= start_hour or hour < end_hour
    return start_hour <= hour < end_hour


def estimate_minutes(distance_km: Decimal | float) -> int:
    distance = float(distance_km)
    speed = CITY_SPEED_KMH if distance < CITY_RADIUS_KM else OPEN_ROAD_SPEED_KMH
    return round(distance / speed * 60)


class PricingEngine:
    """Computes an immutable price breakdown for a delivery request.

    Cross-zone deliveries pay the higher of the two base prices and the
    average of the two per-kilometer rates. Money is ``Decimal`` throughout:
    fees and earnings are rounded half-up to cents, VAT is kept exact so that
    ``final_price * (1 + vat_rate) == final_price + vat`` holds.
    """

    def __init__(
        self,
        zones: ZoneTable = DEFAULT_ZONES,
        vat_rate: Decimal | float | str = "0.18",
        courier_share: Decimal | float | str = "0.70",
        night_surcharge: Decimal | float | str = "25.00",
        free_km: Decimal | float | str = "0",
        distance_provider: DistanceProvider | None = None,
        distance_timeout_s: float = 3.0,
        fallback: HaversineDistanceProvider | None = None,
    ) -> None:
        self.zones = zones
        self.vat_rate = to_decimal(vat_rate)
        self.courier_share = to_decimal(courier_share)
        self.night_surcharge = quantize_money(night_surcharge)
        self.free_km = to_decimal(free_km)
        self.distance_provider = distance_provider
        self.distance_timeout_s = distance_timeout_s
        self.fallback = fallback or HaversineDistanceProvider()
        self._executor: ThreadPoolExecutor | None = None
        if distance_provider is not None:
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="distance")

        if not ZERO <= self.courier_share <= 1:
            raise ValueError(f"courier_share must be within 0..1, got {self.courier_share}")
        if self.vat_rate < 0:
            raise ValueError(f"vat_rate must not be negative, got {self.vat_rate}")

    def compute_price(
        self,
        pickup: Address,
        dropoff: Address,
        vehicle_type: VehicleType,
        is_night_delivery: bool,
    ) -> PricingBreakdown:
        """Price a delivery.

        Raises:
            UnknownZone: an address is outside every zone, or a zone does not price the vehicle
            GeocodingUnavailable: no routing distance and no coordinates to fall back on
        """
        pickup_zone = self.zones.resolve(pickup)
        dropoff_zone = self.zones.resolve(dropoff)
        pickup_rate = pickup_zone.rate(vehicle_type)
        dropoff_rate = dropoff_zone.rate(vehicle_type)

        if pickup_zone.id == dropoff_zone.id:
            base_price = pickup_rate.base_price
            price_per_km = pickup_rate.price_per_km
        else:
            base_price = max(pickup_rate.base_price, dropoff_rate.base_price)
            price_per_km = (pickup_rate.price_per_km + dropoff_rate.price_per_km) / 2

        distance_km, source = self.measure_distance(pickup, dropoff)
        billable_km = max(ZERO, distance_km - self.free_km)

        distance_fee = quantize_money(billable_km * price_per_km)
        night_surcharge = self.night_surcharge if is_night_delivery else ZERO
        final_price = base_price + distance_fee + night_surcharge
        vat = final_price * self.vat_rate
        courier_earnings = quantize_money(final_price * self.courier_share)
        company_earnings = final_price - courier_earnings

        breakdown = PricingBreakdown(
            base_price=base_price,
            price_per_km=price_per_km,
            distance_km=distance_km,
            distance_fee=distance_fee,
            night_surcharge=night_surcharge,
            final_price=final_price,
            vat_rate=self.vat_rate,
            vat=vat,
            courier_share=self.courier_share,
            courier_earnings=courier_earnings,
            company_earnings=company_earnings,
            pickup_zone=pickup_zone.zone_id,
            dropoff_zone=dropoff_zone.zone_id,
            distance_source=source,
            estimated_minutes=estimate_minutes(distance_km),
        )
        breakdown.check_invariants()
        return breakdown

    def measure_distance(self, pickup: Address, dropoff: Address) -> tuple[Decimal, DistanceSource]:
        """Routing distance when available, haversine fallback otherwise."""
        if self.distance_provider is not None:
            try:
                km = self._routing_distance(pickup, dropoff)
                return quantize_money(km), DistanceSource.ROUTING
            except Exception as e:
                logger.warning(
                    f"Routing distance unavailable for {pickup.label()} -> {dropoff.label()}, "
                    f"using haversine fallback: {e}"
                )
        return self.fallback.distance_decimal(pickup, dropoff), DistanceSource.HAVERSINE

    def _routing_distance(self, pickup: Address, dropoff: Address) -> float:
        if self.distance_provider is None or self._executor is None:
            raise RuntimeError("No routing provider configured, or the engine was closed")
        future = self._executor.submit(
            self.distance_provider.distance_km, pickup, dropoff, self.distance_timeout_s
        )
        km = future.result(timeout=self.distance_timeout_s)
        if km < 0:
            raise DistanceUnavailable(f"Routing provider returned negative distance {km}")
        return km

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
