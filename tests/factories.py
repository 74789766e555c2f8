"""Builders shared by the dispatch test suite."""

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

from core.courier import Courier
from core.delivery import Address, Contact, Delivery, DeliveryRequest, PricingBreakdown
from core.geo import Coordinates
from core.types import CourierID, DeliveryID, DeliveryStatus, OrderNumber, VehicleType
from dispatch.couriers import InMemoryCourierDirectory
from dispatch.notifications import InMemoryGateway, NotificationDispatcher
from dispatch.pricing import PricingEngine, Zone, ZoneRate, ZoneTable
from dispatch.registry import DeliveryRegistry, InMemoryDeliveryRegistry
from dispatch.service import DispatchService
from dispatch.settings import DispatchSettings

# Monday, mid-morning UTC
T0 = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)

NORTH = Coordinates(lat=32.08, lng=34.78)
SOUTH = Coordinates(lat=31.98, lng=34.77)


def _rate(base: str, per_km: str) -> ZoneRate:
    return ZoneRate(base_price=Decimal(base), price_per_km=Decimal(per_km))


TEST_ZONES = ZoneTable(
    zones=[
        Zone(
            id="north",
            name="North",
            areas=["Northtown"],
            rates={
                VehicleType.CAR: _rate("50", "4"),
                VehicleType.MOTORCYCLE: _rate("30", "2.5"),
                VehicleType.VAN: _rate("90", "5"),
            },
        ),
        Zone(
            id="south",
            name="South",
            areas=["Southville"],
            rates={
                VehicleType.CAR: _rate("45", "6"),
                VehicleType.MOTORCYCLE: _rate("35", "3"),
            },
        ),
    ]
)


class FixedDistance:
    """Routing provider stub that always answers with the same distance."""

    def __init__(self, km: float) -> None:
        self.km = km
        self.calls = 0

    def distance_km(self, origin: Address, destination: Address, timeout_s: float) -> float:
        self.calls += 1
        return self.km


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_request(
    vehicle_type: VehicleType = VehicleType.CAR,
    pickup_city: str = "Northtown",
    dropoff_city: str = "Southville",
    is_night_delivery: bool | None = False,
) -> DeliveryRequest:
    return DeliveryRequest(
        pickup=Address(street="1 Harbor Rd", city=pickup_city, coordinates=NORTH),
        dropoff=Address(street="9 Market St", city=dropoff_city, coordinates=SOUTH),
        sender=Contact(name="Dana", phone="+972500000001"),
        recipient=Contact(name="Noa", phone="+972500000002"),
        vehicle_type=vehicle_type,
        is_night_delivery=is_night_delivery,
    )


def make_courier(
    courier_id: str,
    vehicle_type: VehicleType = VehicleType.CAR,
    **kwargs: object,
) -> Courier:
    kwargs.setdefault("phone", f"+972-{courier_id}")
    return Courier(id=CourierID(courier_id), name=courier_id, vehicle_type=vehicle_type, **kwargs)  # type: ignore[arg-type]


def make_engine(distance_km: float = 12.4) -> PricingEngine:
    return PricingEngine(zones=TEST_ZONES, distance_provider=FixedDistance(distance_km))


def make_pricing(distance_km: float = 12.4) -> PricingBreakdown:
    request = make_request()
    return make_engine(distance_km).compute_price(
        request.pickup, request.dropoff, request.vehicle_type, False
    )


def make_delivery(
    status: DeliveryStatus = DeliveryStatus.PENDING,
    courier_id: str | None = None,
    version: int = 0,
    with_pricing: bool = True,
) -> Delivery:
    """A record sitting in ``status`` with consistent timeline stamps."""
    delivery = Delivery.new(
        delivery_id=DeliveryID("d-1"),
        order_number=OrderNumber("DLV-TEST-1"),
        request=make_request(),
        pricing=make_pricing(),
        is_night_delivery=False,
        created_at=T0,
    )
    timeline = delivery.timeline
    for reached in _path_to(status):
        timeline = timeline.stamp(reached, T0)
    return replace(
        delivery,
        status=status,
        courier_id=CourierID(courier_id) if courier_id else None,
        version=version,
        timeline=timeline,
        pricing=delivery.pricing if with_pricing else None,
    )


def _path_to(status: DeliveryStatus) -> list[DeliveryStatus]:
    order = [
        DeliveryStatus.PENDING,
        DeliveryStatus.PUBLISHED,
        DeliveryStatus.CLAIMED,
        DeliveryStatus.PICKED_UP,
        DeliveryStatus.IN_TRANSIT,
        DeliveryStatus.DELIVERED,
        DeliveryStatus.COMPLETED,
    ]
    if status == DeliveryStatus.CANCELLED:
        return [DeliveryStatus.PENDING, DeliveryStatus.PUBLISHED, DeliveryStatus.CANCELLED]
    return order[: order.index(status) + 1]


def make_service(
    registry: DeliveryRegistry | None = None,
    couriers: list[Courier] | None = None,
    gateway: InMemoryGateway | None = None,
    distance_km: float = 12.4,
    clock: FakeClock | None = None,
    settings: DispatchSettings | None = None,
) -> DispatchService:
    registry = registry if registry is not None else InMemoryDeliveryRegistry()
    directory = InMemoryCourierDirectory(couriers or [])
    notifier = NotificationDispatcher(gateway or InMemoryGateway(), directory, registry=registry)
    return DispatchService(
        registry,
        directory,
        make_engine(distance_km),
        notifier,
        settings=settings,
        clock=clock or FakeClock(),
    )
