"""Delivery registry port and the in-memory adapter."""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from core.delivery import Delivery
from core.errors import DeliveryNotFound, DuplicateOrderNumber, VersionConflict
from core.types import CourierID, DeliveryID, DeliveryStatus, OrderNumber

logger = logging.getLogger(__name__)

Mutator = Callable[[Delivery], Delivery]


class DeliveryRegistry(ABC):
    """Durable store of deliveries with a version-checked update.

    ``conditional_update`` is the only write path after ``create``. Every
    adapter must make it atomic: the mutator runs against the stored record
    and the result is persisted only if the stored version still equals
    ``expected_version``.
    """

    @abstractmethod
    def create(self, delivery: Delivery) -> Delivery:
        """Insert a new record.

        Raises:
            DuplicateOrderNumber: id or order number already stored
        """

    @abstractmethod
    def get_by_id(self, delivery_id: DeliveryID) -> Delivery | None:
        pass

    @abstractmethod
    def get_by_order_number(self, order_number: OrderNumber) -> Delivery | None:
        pass

    @abstractmethod
    def conditional_update(
        self, delivery_id: DeliveryID, expected_version: int, mutator: Mutator
    ) -> Delivery:
        """Apply ``mutator`` if the stored version equals ``expected_version``.

        The stored record gets ``version = expected_version + 1`` whatever the
        mutator returned. Exceptions raised by the mutator propagate and
        nothing is written.

        Raises:
            DeliveryNotFound: no record with this id
            VersionConflict: stored version differs from ``expected_version``
        """

    @abstractmethod
    def list_by_status(
        self, status: DeliveryStatus, older_than: datetime | None = None
    ) -> list[Delivery]:
        """Records in ``status``; with ``older_than``, only those that entered it strictly before."""

    @abstractmethod
    def list_by_courier(self, courier_id: CourierID) -> list[Delivery]:
        pass

    def get(self, delivery_id: DeliveryID) -> Delivery:
        """Like ``get_by_id`` but raises when missing."""
        delivery = self.get_by_id(delivery_id)
        if delivery is None:
            raise DeliveryNotFound(f"Delivery {delivery_id} not found")
        return delivery


def apply_mutation(current: Delivery, expected_version: int, mutator: Mutator) -> Delivery:
    updated = mutator(current)
    if updated.id != current.id:
        raise ValueError(f"Mutator changed delivery id {current.id} -> {updated.id}")
    return replace(updated, version=expected_version + 1)


def _entered_before(delivery: Delivery, older_than: datetime | None) -> bool:
    if older_than is None:
        return True
    since = delivery.status_since
    return since is not None and since < older_than


class InMemoryDeliveryRegistry(DeliveryRegistry):
    """Dict-backed registry for tests and single-process deployments.

    The lock only serializes the registry's own compare-and-set, the way a
    database serializes a single-row update.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_id: dict[DeliveryID, Delivery] = {}
        self._by_order: dict[OrderNumber, DeliveryID] = {}
        self._by_status: dict[DeliveryStatus, set[DeliveryID]] = {s: set() for s in DeliveryStatus}
        self._by_courier: dict[CourierID, set[DeliveryID]] = {}

    def __len__(self) -> int:
        return len(self._by_id)

    def _index(self, delivery: Delivery) -> None:
        self._by_status[delivery.status].add(delivery.id)
        if delivery.courier_id is not None:
            self._by_courier.setdefault(delivery.courier_id, set()).add(delivery.id)

    def _unindex(self, delivery: Delivery) -> None:
        self._by_status[delivery.status].discard(delivery.id)
        if delivery.courier_id is not None:
            self._by_courier.get(delivery.courier_id, set()).discard(delivery.id)

    def create(self, delivery: Delivery) -> Delivery:
        with self._lock:
            if delivery.id in self._by_id:
                raise DuplicateOrderNumber(f"Delivery id {delivery.id} already exists")
            if delivery.order_number in self._by_order:
                raise DuplicateOrderNumber(f"Order number {delivery.order_number} already exists")
            self._by_id[delivery.id] = delivery
            self._by_order[delivery.order_number] = delivery.id
            self._index(delivery)
        return delivery

    def get_by_id(self, delivery_id: DeliveryID) -> Delivery | None:
        return self._by_id.get(delivery_id)

    def get_by_order_number(self, order_number: OrderNumber) -> Delivery | None:
        delivery_id = self._by_order.get(order_number)
        return self._by_id.get(delivery_id) if delivery_id is not None else None

    def conditional_update(
        self, delivery_id: DeliveryID, expected_version: int, mutator: Mutator
    ) -> Delivery:
        with self._lock:
            current = self._by_id.get(delivery_id)
            if current is None:
                raise DeliveryNotFound(f"Delivery {delivery_id} not found")
            if current.version != expected_version:
                raise VersionConflict(delivery_id, expected_version, current.version)
            updated = apply_mutation(current, expected_version, mutator)
            self._unindex(current)
            self._by_id[delivery_id] = updated
            self._index(updated)
        return updated

    def list_by_status(
        self, status: DeliveryStatus, older_than: datetime | None = None
    ) -> list[Delivery]:
        with self._lock:
            records = [self._by_id[i] for i in self._by_status[status]]
        records = [d for d in records if _entered_before(d, older_than)]
        return sorted(records, key=lambda d: (d.status_since or d.timeline.created_at, d.id))

    def list_by_courier(self, courier_id: CourierID) -> list[Delivery]:
        with self._lock:
            records = [self._by_id[i] for i in self._by_courier.get(courier_id, set())]
        return sorted(records, key=lambda d: (d.timeline.created_at, d.id))
