"""Dispatch service: the operations callers use, composed from the core parts."""

import logging
import secrets
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from core.delivery import Delivery, DeliveryRequest, PricingBreakdown
from core.errors import (
    DeliveryNotFound,
    DispatchError,
    DuplicateOrderNumber,
    IllegalTransition,
    InvalidRequest,
    InvalidStateError,
    VersionConflict,
)
from core.events import Actor, DispatchEvent
from core.fsm import LifecycleStateMachine, TransitionResult
from core.types import (
    ASSIGNED_STATUSES,
    CourierID,
    DeliveryID,
    DeliveryStatus,
    OrderNumber,
)

from .claims import ClaimCoordinator
from .couriers import CourierDirectory, InMemoryCourierDirectory
from .notifications import (
    LoggingGateway,
    NotificationDispatcher,
    NotificationGateway,
    NotificationLog,
)
from .notifications.dispatcher import NotificationOutcome
from .pricing import DistanceProvider, PricingEngine, is_night_time, load_zone_table
from .pricing.zones import DEFAULT_ZONES
from .recommender import CourierCandidate, CourierRecommender, Recommendation
from .registry import DeliveryRegistry, InMemoryDeliveryRegistry
from .reminders import ReminderReport, ReminderScanner
from .scheduler import utc_now
from .settings import DispatchSettings
from .sweeper import ExpirySweeper

logger = logging.getLogger(__name__)

# Statuses a courier may move a delivery into through ``advance_delivery``
ADVANCE_TARGETS = frozenset(
    {DeliveryStatus.PICKED_UP, DeliveryStatus.IN_TRANSIT, DeliveryStatus.DELIVERED}
)

ORDER_NUMBER_ATTEMPTS = 3


@dataclass(frozen=True)
class CreateDeliveryResult:
    delivery: Delivery
    pricing: PricingBreakdown
    events: list[DispatchEvent] = field(default_factory=list)
    notifications: list[NotificationOutcome] = field(default_factory=list)


class DispatchService:
    """Entry point for creating, claiming, advancing, cancelling and expiring deliveries.

    Every state change goes through the lifecycle state machine inside a
    registry conditional update; the resulting event is handed to the
    notification dispatcher only after the write committed.
    """

    def __init__(
        self,
        registry: DeliveryRegistry,
        couriers: CourierDirectory,
        pricing: PricingEngine,
        notifier: NotificationDispatcher,
        settings: DispatchSettings | None = None,
        recommender: CourierRecommender | None = None,
        state_machine: LifecycleStateMachine | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings or DispatchSettings()
        self.registry = registry
        self.couriers = couriers
        self.pricing = pricing
        self.notifier = notifier
        self.recommender = recommender or CourierRecommender()
        self.state_machine = state_machine or LifecycleStateMachine()
        self.clock = clock
        self.claims = ClaimCoordinator(
            registry,
            couriers,
            state_machine=self.state_machine,
            max_attempts=self.settings.claim_max_attempts,
        )
        self.sweeper = ExpirySweeper(
            registry,
            ttl=self.settings.expiry_ttl,
            interval=self.settings.sweep_interval,
            state_machine=self.state_machine,
            listener=self._on_expired,
        )
        pending_after, pending_until = self.settings.reminder_window
        self.reminders = ReminderScanner(
            registry,
            notifier,
            pending_after=pending_after,
            pending_until=pending_until,
            stuck_after=self.settings.stuck_after,
            interval=self.settings.reminder_interval,
        )

    @classmethod
    def from_settings(
        cls,
        settings: DispatchSettings,
        couriers: CourierDirectory | None = None,
        gateway: NotificationGateway | None = None,
        distance_provider: DistanceProvider | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "DispatchService":
        """Wire a service from configuration."""
        registry: DeliveryRegistry
        if settings.database_url:
            from .sql_registry import SqlDeliveryRegistry

            registry = SqlDeliveryRegistry(settings.database_url)
        else:
            registry = InMemoryDeliveryRegistry()

        zones = load_zone_table(settings.zones_file) if settings.zones_file else DEFAULT_ZONES
        pricing = PricingEngine(
            zones=zones,
            vat_rate=settings.vat_rate,
            courier_share=settings.courier_share,
            night_surcharge=settings.night_surcharge,
            free_km=settings.free_km,
            distance_provider=distance_provider,
            distance_timeout_s=settings.distance_timeout_s,
        )
        couriers = couriers or InMemoryCourierDirectory()
        notifier = NotificationDispatcher(
            gateway or LoggingGateway(),
            couriers,
            registry=registry,
            log=NotificationLog(maxlen=settings.notification_log_size),
        )
        return cls(registry, couriers, pricing, notifier, settings=settings, clock=clock)

    # Queries

    def get_delivery(self, delivery_id: DeliveryID) -> Delivery:
        return self.registry.get(delivery_id)

    def get_delivery_by_order_number(self, order_number: OrderNumber) -> Delivery:
        delivery = self.registry.get_by_order_number(order_number)
        if delivery is None:
            raise DeliveryNotFound(f"Order {order_number} not found")
        return delivery

    def list_deliveries(self, status: DeliveryStatus) -> list[Delivery]:
        return self.registry.list_by_status(status)

    def list_courier_deliveries(self, courier_id: CourierID) -> list[Delivery]:
        return self.registry.list_by_courier(courier_id)

    def recommend_couriers(
        self, delivery_id: DeliveryID, limit: int | None = None, now: datetime | None = None
    ) -> list[Recommendation]:
        """Rank couriers who could take the delivery; advisory only."""
        delivery = self.registry.get(delivery_id)
        now = now or self.clock()
        candidates = [
            CourierCandidate.from_courier(c)
            for c in self.couriers.list_eligible(delivery.vehicle_type, now)
        ]
        return self.recommender.recommend(delivery, candidates, limit=limit)

    # Commands

    def create_delivery(
        self, request: DeliveryRequest, now: datetime | None = None
    ) -> CreateDeliveryResult:
        """Price, store and publish a new delivery.

        Raises:
            InvalidRequest: request is missing required data
            UnknownZone: an address is outside every pricing zone
            GeocodingUnavailable: no way to measure the distance
        """
        now = now or self.clock()
        self._validate_request(request)

        is_night = request.is_night_delivery
        if is_night is None:
            is_night = is_night_time(
                now.astimezone(self.settings.tzinfo),
                self.settings.night_start_hour,
                self.settings.night_end_hour,
            )
        pricing = self.pricing.compute_price(
            request.pickup, request.dropoff, request.vehicle_type, is_night
        )

        pending = self._store_new(request, pricing, is_night, now)
        result = self._apply(pending.id, DeliveryStatus.PUBLISHED, Actor.system(), now)
        logger.info(
            f"Delivery {pending.order_number} created and published "
            f"(final price {pricing.final_price}, {pricing.pickup_zone}->{pricing.dropoff_zone})"
        )
        notifications = self._notify(result)
        return CreateDeliveryResult(
            delivery=result.delivery,
            pricing=pricing,
            events=[result.event],
            notifications=notifications,
        )

    def claim_delivery(
        self, delivery_id: DeliveryID, courier_id: CourierID, now: datetime | None = None
    ) -> Delivery:
        """Assign a published delivery to the first courier who claims it.

        Raises:
            AlreadyClaimed, AlreadyTerminal, NotEligible, DeliveryNotFound, ClaimConflict
        """
        result = self.claims.claim(delivery_id, courier_id, now or self.clock())
        self._notify(result)
        return result.delivery

    def advance_delivery(
        self,
        delivery_id: DeliveryID,
        courier_id: CourierID,
        target_status: DeliveryStatus,
        now: datetime | None = None,
    ) -> Delivery:
        """Move a claimed delivery forward on behalf of its courier.

        Raises:
            IllegalTransition: target not reachable or not a courier step
            NotAssignedCourier: courier does not hold the delivery
        """
        if target_status not in ADVANCE_TARGETS:
            raise IllegalTransition(
                f"Couriers cannot advance a delivery to {target_status.value}"
            )
        result = self._apply(
            delivery_id, target_status, Actor.courier(courier_id), now or self.clock()
        )
        self._notify(result)
        return result.delivery

    def cancel_delivery(
        self,
        delivery_id: DeliveryID,
        actor: Actor,
        reason: str,
        now: datetime | None = None,
    ) -> Delivery:
        """Cancel a delivery that has not been delivered yet.

        Raises:
            AlreadyTerminal: delivery is delivered, completed or cancelled
            IllegalTransition: actor may not cancel from the current status
        """
        result = self._apply(
            delivery_id, DeliveryStatus.CANCELLED, actor, now or self.clock(), reason=reason
        )
        if result.event.from_status in ASSIGNED_STATUSES and result.delivery.courier_id:
            self._count(self.couriers.record_cancellation, result.delivery.courier_id)
        self._notify(result)
        return result.delivery

    def complete_delivery(
        self,
        delivery_id: DeliveryID,
        actor: Actor | None = None,
        proof_of_delivery: str | None = None,
        now: datetime | None = None,
    ) -> Delivery:
        """Close a delivered delivery and credit the courier."""
        result = self._apply(
            delivery_id,
            DeliveryStatus.COMPLETED,
            actor or Actor.system(),
            now or self.clock(),
            proof_of_delivery=proof_of_delivery,
        )
        delivery = result.delivery
        if delivery.courier_id and delivery.pricing:
            self._count(
                self.couriers.record_completion,
                delivery.courier_id,
                delivery.pricing.courier_earnings,
            )
        self._notify(result)
        return delivery

    def sweep_expired(self, now: datetime | None = None, ttl: timedelta | None = None) -> int:
        """Cancel published deliveries nobody claimed within ``ttl``."""
        return self.sweeper.sweep(now or self.clock(), ttl)

    def send_reminders(self, now: datetime | None = None) -> ReminderReport:
        """Remind couriers about deliveries waiting to be claimed or picked up."""
        return self.reminders.run(now or self.clock())

    # Internals

    @staticmethod
    def _validate_request(request: DeliveryRequest) -> None:
        for label, address in (("pickup", request.pickup), ("dropoff", request.dropoff)):
            if not address.city.strip():
                raise InvalidRequest(f"{label} address needs a city")
        if not request.sender.name.strip() and not request.sender.phone:
            raise InvalidRequest("sender needs a name or a phone number")
        if not request.recipient.name.strip() and not request.recipient.phone:
            raise InvalidRequest("recipient needs a name or a phone number")

    def _new_order_number(self, now: datetime) -> OrderNumber:
        suffix = secrets.token_hex(3).upper()
        return OrderNumber(f"{self.settings.order_number_prefix}-{now:%Y%m%d}-{suffix}")

    def _store_new(
        self, request: DeliveryRequest, pricing: PricingBreakdown, is_night: bool, now: datetime
    ) -> Delivery:
        attempt = 1
        while True:
            delivery = Delivery.new(
                delivery_id=DeliveryID(uuid.uuid4().hex),
                order_number=self._new_order_number(now),
                request=request,
                pricing=pricing,
                is_night_delivery=is_night,
                created_at=now,
            )
            try:
                return self.registry.create(delivery)
            except DuplicateOrderNumber:
                if attempt >= ORDER_NUMBER_ATTEMPTS:
                    raise
                logger.info(f"Order number {delivery.order_number} taken, generating another")
                attempt += 1

    def _apply(
        self,
        delivery_id: DeliveryID,
        target: DeliveryStatus,
        actor: Actor,
        now: datetime,
        reason: str | None = None,
        proof_of_delivery: str | None = None,
        attempts: int = 2,
    ) -> TransitionResult:
        """Run one transition through the registry, re-reading once on a version race."""
        captured: list[TransitionResult] = []

        def mutate(current: Delivery) -> Delivery:
            result = self.state_machine.transition(
                current, target, actor, now, reason=reason, proof_of_delivery=proof_of_delivery
            )
            captured.append(result)
            return result.delivery

        attempt = 1
        while True:
            delivery = self.registry.get(delivery_id)
            captured.clear()
            try:
                stored = self.registry.conditional_update(delivery_id, delivery.version, mutate)
            except VersionConflict:
                if attempt >= attempts:
                    raise
                logger.info(f"Delivery {delivery_id} changed concurrently, re-reading")
                attempt += 1
                continue
            except InvalidStateError as e:
                logger.warning(f"Rejected transition on {delivery_id}: {e}")
                raise
            logger.info(
                f"Delivery {delivery_id}: {captured[-1].event.from_status.value} -> "
                f"{target.value} by {actor.actor_type.value} {actor.actor_id}"
            )
            return TransitionResult(delivery=stored, event=captured[-1].event)

    def _count(self, record: Callable[..., None], *args: object) -> None:
        try:
            record(*args)
        except DispatchError as e:
            logger.warning(f"Courier counters not updated: {e}")

    def _notify(self, result: TransitionResult) -> list[NotificationOutcome]:
        try:
            return self.notifier.dispatch(result.event, result.delivery)
        except Exception as e:
            logger.error(
                f"Notification dispatch failed for {result.event.delivery_id}: {e}", exc_info=True
            )
            return []

    def _on_expired(self, event: DispatchEvent) -> None:
        self.notifier.dispatch(event, self.registry.get_by_id(event.delivery_id))
