"""Tests for the delivery registry adapters."""

from collections.abc import Iterator
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from core.delivery import Delivery
from core.errors import DeliveryNotFound, DuplicateOrderNumber, VersionConflict
from core.types import CourierID, DeliveryID, DeliveryStatus, OrderNumber
from dispatch.registry import DeliveryRegistry, InMemoryDeliveryRegistry
from dispatch.sql_registry import SqlDeliveryRegistry
from tests.factories import T0, make_delivery


@pytest.fixture(params=["memory", "sql"])
def registry(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[DeliveryRegistry]:
    if request.param == "memory":
        yield InMemoryDeliveryRegistry()
        return
    sql = SqlDeliveryRegistry(f"sqlite:///{tmp_path / 'deliveries.db'}")
    yield sql
    sql.dispose()


def _delivery(n: int, status: DeliveryStatus = DeliveryStatus.PUBLISHED, **kwargs: object) -> Delivery:
    base = make_delivery(status, **kwargs)  # type: ignore[arg-type]
    return replace(base, id=DeliveryID(f"d-{n}"), order_number=OrderNumber(f"DLV-{n}"))


def _entered(delivery: Delivery, status: DeliveryStatus, moment: datetime) -> Delivery:
    field_name = {
        DeliveryStatus.PUBLISHED: "published_at",
        DeliveryStatus.CLAIMED: "claimed_at",
    }[status]
    return replace(delivery, timeline=replace(delivery.timeline, **{field_name: moment}))


class TestCreateAndGet:
    """Test inserting and reading records."""

    def test_create_then_get(self, registry: DeliveryRegistry) -> None:
        delivery = _delivery(1)
        registry.create(delivery)

        assert registry.get_by_id(DeliveryID("d-1")) == delivery
        assert registry.get_by_order_number(OrderNumber("DLV-1")) == delivery
        assert registry.get(DeliveryID("d-1")) == delivery

    def test_missing_records(self, registry: DeliveryRegistry) -> None:
        assert registry.get_by_id(DeliveryID("nope")) is None
        assert registry.get_by_order_number(OrderNumber("nope")) is None
        with pytest.raises(DeliveryNotFound):
            registry.get(DeliveryID("nope"))

    def test_duplicate_order_number(self, registry: DeliveryRegistry) -> None:
        registry.create(_delivery(1))
        clash = replace(_delivery(2), order_number=OrderNumber("DLV-1"))

        with pytest.raises(DuplicateOrderNumber):
            registry.create(clash)
        assert registry.get_by_id(DeliveryID("d-2")) is None

    def test_duplicate_id(self, registry: DeliveryRegistry) -> None:
        registry.create(_delivery(1))
        with pytest.raises(DuplicateOrderNumber):
            registry.create(replace(_delivery(1), order_number=OrderNumber("DLV-other")))


class TestConditionalUpdate:
    """Test the version-checked write path."""

    def test_update_bumps_version(self, registry: DeliveryRegistry) -> None:
        registry.create(_delivery(1, version=2))

        updated = registry.conditional_update(
            DeliveryID("d-1"), 2, lambda d: replace(d, notes="fragile")
        )

        assert updated.version == 3
        assert updated.notes == "fragile"
        assert registry.get(DeliveryID("d-1")) == updated

    def test_version_is_stamped_by_registry(self, registry: DeliveryRegistry) -> None:
        """Whatever version the mutator sets, the stored one is expected + 1."""
        registry.create(_delivery(1, version=5))

        updated = registry.conditional_update(
            DeliveryID("d-1"), 5, lambda d: replace(d, version=42)
        )

        assert updated.version == 6

    def test_stale_version_conflicts(self, registry: DeliveryRegistry) -> None:
        registry.create(_delivery(1, version=1))

        with pytest.raises(VersionConflict) as exc_info:
            registry.conditional_update(DeliveryID("d-1"), 0, lambda d: replace(d, notes="x"))

        assert exc_info.value.actual_version == 1
        assert registry.get(DeliveryID("d-1")).notes == ""

    def test_missing_record(self, registry: DeliveryRegistry) -> None:
        with pytest.raises(DeliveryNotFound):
            registry.conditional_update(DeliveryID("nope"), 0, lambda d: d)

    def test_mutator_error_writes_nothing(self, registry: DeliveryRegistry) -> None:
        registry.create(_delivery(1))

        def boom(_d: Delivery) -> Delivery:
            raise RuntimeError("mutator failed")

        with pytest.raises(RuntimeError):
            registry.conditional_update(DeliveryID("d-1"), 0, boom)
        assert registry.get(DeliveryID("d-1")).version == 0

    def test_id_change_rejected(self, registry: DeliveryRegistry) -> None:
        registry.create(_delivery(1))
        with pytest.raises(ValueError):
            registry.conditional_update(
                DeliveryID("d-1"), 0, lambda d: replace(d, id=DeliveryID("d-9"))
            )

    def test_status_change_moves_indexes(self, registry: DeliveryRegistry) -> None:
        registry.create(_delivery(1))

        registry.conditional_update(
            DeliveryID("d-1"),
            0,
            lambda d: _entered(
                replace(d, status=DeliveryStatus.CLAIMED, courier_id=CourierID("c-1")),
                DeliveryStatus.CLAIMED,
                T0,
            ),
        )

        assert registry.list_by_status(DeliveryStatus.PUBLISHED) == []
        assert [d.id for d in registry.list_by_status(DeliveryStatus.CLAIMED)] == ["d-1"]
        assert [d.id for d in registry.list_by_courier(CourierID("c-1"))] == ["d-1"]


class TestListing:
    """Test status and courier queries."""

    def test_older_than_is_strict(self, registry: DeliveryRegistry) -> None:
        """A record entering the status exactly at the cutoff is not older."""
        registry.create(_entered(_delivery(1), DeliveryStatus.PUBLISHED, T0))
        registry.create(_entered(_delivery(2), DeliveryStatus.PUBLISHED, T0 + timedelta(minutes=1)))
        registry.create(_entered(_delivery(3), DeliveryStatus.PUBLISHED, T0 - timedelta(minutes=1)))

        older = registry.list_by_status(DeliveryStatus.PUBLISHED, older_than=T0)

        assert [d.id for d in older] == ["d-3"]
        assert len(registry.list_by_status(DeliveryStatus.PUBLISHED)) == 3

    def test_list_by_status_is_ordered_by_entry_time(self, registry: DeliveryRegistry) -> None:
        registry.create(_entered(_delivery(1), DeliveryStatus.PUBLISHED, T0 + timedelta(minutes=2)))
        registry.create(_entered(_delivery(2), DeliveryStatus.PUBLISHED, T0))

        assert [d.id for d in registry.list_by_status(DeliveryStatus.PUBLISHED)] == ["d-2", "d-1"]

    def test_list_by_courier(self, registry: DeliveryRegistry) -> None:
        registry.create(_delivery(1, status=DeliveryStatus.CLAIMED, courier_id="c-1"))
        registry.create(_delivery(2, status=DeliveryStatus.PICKED_UP, courier_id="c-1"))
        registry.create(_delivery(3, status=DeliveryStatus.CLAIMED, courier_id="c-2"))

        assert [d.id for d in registry.list_by_courier(CourierID("c-1"))] == ["d-1", "d-2"]
        assert registry.list_by_courier(CourierID("c-3")) == []


class TestSqlRegistry:
    """SQL-specific behavior."""

    def test_records_survive_a_new_engine(self, tmp_path: Path) -> None:
        url = f"sqlite:///{tmp_path / 'deliveries.db'}"
        first = SqlDeliveryRegistry(url)
        first.create(_delivery(1))
        first.dispose()

        second = SqlDeliveryRegistry(url)
        try:
            restored = second.get(DeliveryID("d-1"))
        finally:
            second.dispose()
        assert restored == _delivery(1)
        assert restored.pricing is not None
