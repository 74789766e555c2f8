"""Tests for the expiry sweeper and its scheduler."""

import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from core.delivery import Delivery
from core.events import DispatchEvent
from core.types import ActorType, DeliveryID, DeliveryStatus, OrderNumber
from dispatch.registry import InMemoryDeliveryRegistry
from dispatch.scheduler import SweepScheduler
from dispatch.sweeper import ExpirySweeper
from tests.factories import T0, make_delivery


def _published(n: int, published_at: datetime = T0) -> Delivery:
    delivery = replace(
        make_delivery(DeliveryStatus.PUBLISHED, version=1),
        id=DeliveryID(f"d-{n}"),
        order_number=OrderNumber(f"DLV-{n}"),
    )
    return replace(delivery, timeline=replace(delivery.timeline, published_at=published_at))


class StaleListingRegistry(InMemoryDeliveryRegistry):
    """Lists records as they were before a concurrent write."""

    def list_by_status(
        self, status: DeliveryStatus, older_than: datetime | None = None
    ) -> list[Delivery]:
        return [replace(d, version=d.version - 1) for d in super().list_by_status(status, older_than)]


class TestSweep:
    """Test expiry decisions."""

    def setup_method(self) -> None:
        self.registry = InMemoryDeliveryRegistry()
        self.events: list[DispatchEvent] = []
        self.sweeper = ExpirySweeper(self.registry, listener=self.events.append)

    def test_expiry_boundary(self) -> None:
        """29 minutes survives, exactly 30 survives, 31 expires."""
        self.registry.create(_published(1))

        assert self.sweeper.sweep(T0 + timedelta(minutes=29)) == 0
        assert self.sweeper.sweep(T0 + timedelta(minutes=30)) == 0
        assert self.sweeper.sweep(T0 + timedelta(minutes=31)) == 1

        stored = self.registry.get(DeliveryID("d-1"))
        assert stored.status == DeliveryStatus.CANCELLED
        assert stored.cancellation_reason == "expired: not claimed within 30 minutes"
        assert stored.timeline.cancelled_at == T0 + timedelta(minutes=31)
        assert stored.version == 2

    def test_sweep_is_idempotent(self) -> None:
        self.registry.create(_published(1))
        later = T0 + timedelta(hours=1)

        assert self.sweeper.sweep(later) == 1
        assert self.sweeper.sweep(later) == 0
        assert len(self.events) == 1

    def test_event_is_system_cancellation(self) -> None:
        self.registry.create(_published(1))
        self.sweeper.sweep(T0 + timedelta(hours=1))

        event = self.events[0]
        assert event.actor_type == ActorType.SYSTEM
        assert event.from_status == DeliveryStatus.PUBLISHED
        assert event.to_status == DeliveryStatus.CANCELLED
        assert event.payload["reason"].startswith("expired")

    def test_claimed_deliveries_are_never_swept(self) -> None:
        claimed = replace(
            make_delivery(DeliveryStatus.CLAIMED, courier_id="c-1"),
            id=DeliveryID("d-2"),
            order_number=OrderNumber("DLV-2"),
        )
        self.registry.create(claimed)

        assert self.sweeper.sweep(T0 + timedelta(days=1)) == 0
        assert self.registry.get(DeliveryID("d-2")).status == DeliveryStatus.CLAIMED

    def test_only_old_records_expire(self) -> None:
        self.registry.create(_published(1, T0))
        self.registry.create(_published(2, T0 + timedelta(minutes=20)))

        assert self.sweeper.sweep(T0 + timedelta(minutes=40)) == 1
        assert self.registry.get(DeliveryID("d-2")).status == DeliveryStatus.PUBLISHED

    def test_custom_ttl(self) -> None:
        self.registry.create(_published(1))
        assert self.sweeper.sweep(T0 + timedelta(minutes=11), ttl=timedelta(minutes=10)) == 1
        assert self.registry.get(DeliveryID("d-1")).cancellation_reason == (
            "expired: not claimed within 10 minutes"
        )

    def test_concurrent_write_is_skipped(self) -> None:
        """A record that moved on since the listing is left alone."""
        registry = StaleListingRegistry()
        registry.create(_published(1))
        sweeper = ExpirySweeper(registry)

        assert sweeper.sweep(T0 + timedelta(hours=1)) == 0
        assert registry.get(DeliveryID("d-1")).status == DeliveryStatus.PUBLISHED

    def test_listener_failure_does_not_undo_cancellation(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        def broken(_event: DispatchEvent) -> None:
            raise RuntimeError("listener down")

        self.registry.create(_published(1))
        sweeper = ExpirySweeper(self.registry, listener=broken)

        with caplog.at_level(logging.ERROR, logger="dispatch.sweeper"):
            assert sweeper.sweep(T0 + timedelta(hours=1)) == 1

        assert self.registry.get(DeliveryID("d-1")).status == DeliveryStatus.CANCELLED
        assert "listener down" in caplog.text


class TestTick:
    """Test interval gating."""

    def test_tick_respects_interval(self) -> None:
        registry = InMemoryDeliveryRegistry()
        sweeper = ExpirySweeper(registry)

        assert sweeper.tick(T0) == 0
        assert sweeper.tick(T0 + timedelta(minutes=4)) is None
        assert sweeper.tick(T0 + timedelta(minutes=5)) == 0
        assert sweeper.last_run == T0 + timedelta(minutes=5)


class TestSweepScheduler:
    """Test the background driver."""

    def test_start_and_stop(self) -> None:
        registry = InMemoryDeliveryRegistry()
        registry.create(_published(1))
        sweeper = ExpirySweeper(registry)
        ticked = threading.Event()

        def clock() -> datetime:
            ticked.set()
            return T0 + timedelta(hours=1)

        scheduler = SweepScheduler(sweeper, poll_interval_s=0.01, clock=clock)
        scheduler.start()
        try:
            assert ticked.wait(timeout=5.0)
            assert scheduler.is_running
        finally:
            scheduler.stop()

        assert not scheduler.is_running
        assert registry.get(DeliveryID("d-1")).status == DeliveryStatus.CANCELLED

    def test_errors_do_not_kill_the_loop(self) -> None:
        calls: list[datetime] = []
        done = threading.Event()

        class ExplodingSweeper(ExpirySweeper):
            def tick(self, now: datetime) -> int | None:
                calls.append(now)
                if len(calls) >= 3:
                    done.set()
                raise RuntimeError("database gone")

        scheduler = SweepScheduler(
            ExplodingSweeper(InMemoryDeliveryRegistry()), poll_interval_s=0.01, clock=lambda: T0
        )
        scheduler.start()
        try:
            assert done.wait(timeout=5.0)
        finally:
            scheduler.stop()
        assert len(calls) >= 3

    def test_double_start_is_ignored(self) -> None:
        scheduler = SweepScheduler(
            ExpirySweeper(InMemoryDeliveryRegistry()), poll_interval_s=0.01, clock=lambda: T0
        )
        scheduler.start()
        thread = scheduler._thread
        try:
            scheduler.start()
            assert scheduler._thread is thread
        finally:
            scheduler.stop()
