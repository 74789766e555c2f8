"""SQLAlchemy-backed delivery registry."""

import logging
from datetime import datetime, timezone
from typing import Any

import orjson
from sqlalchemy import (
    Column,
    DateTime,
    Engine,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    insert,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError

from core.delivery import Delivery
from core.errors import DeliveryNotFound, DuplicateOrderNumber, VersionConflict
from core.types import CourierID, DeliveryID, DeliveryStatus, OrderNumber

from .registry import DeliveryRegistry, Mutator, apply_mutation

logger = logging.getLogger(__name__)

metadata = MetaData()

deliveries_table = Table(
    "deliveries",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("order_number", String(64), nullable=False, unique=True),
    Column("status", String(32), nullable=False, index=True),
    Column("courier_id", String(64), nullable=True, index=True),
    Column("status_since", DateTime, nullable=True, index=True),
    Column("version", Integer, nullable=False),
    Column("payload", Text, nullable=False),
)


def _utc_naive(moment: datetime | None) -> datetime | None:
    """Normalize to naive UTC so every backend compares the same way."""
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def _row_values(delivery: Delivery) -> dict[str, Any]:
    return {
        "id": str(delivery.id),
        "order_number": str(delivery.order_number),
        "status": delivery.status.value,
        "courier_id": str(delivery.courier_id) if delivery.courier_id else None,
        "status_since": _utc_naive(delivery.status_since),
        "version": delivery.version,
        "payload": orjson.dumps(delivery.to_dict()).decode("utf-8"),
    }


def _decode(payload: str) -> Delivery:
    return Delivery.from_dict(orjson.loads(payload))


def _use_immediate_transactions(engine: Engine) -> None:
    """Make SQLite take the write lock at BEGIN so concurrent writers queue up."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(connection: Any) -> None:
        connection.exec_driver_sql("BEGIN IMMEDIATE")


class SqlDeliveryRegistry(DeliveryRegistry):
    """Registry on a relational database.

    ``conditional_update`` is a single ``UPDATE ... WHERE id = :id AND
    version = :expected``; zero affected rows means another writer won.
    """

    def __init__(self, engine: Engine | str, create_schema: bool = True) -> None:
        self.engine = create_engine(engine) if isinstance(engine, str) else engine
        if self.engine.dialect.name == "sqlite":
            _use_immediate_transactions(self.engine)
        if create_schema:
            metadata.create_all(self.engine)
            logger.info(f"Delivery schema ready on {self.engine.url.render_as_string(hide_password=True)}")

    def create(self, delivery: Delivery) -> Delivery:
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(deliveries_table).values(**_row_values(delivery)))
        except IntegrityError as e:
            raise DuplicateOrderNumber(
                f"Delivery {delivery.id} / order {delivery.order_number} already exists"
            ) from e
        return delivery

    def get_by_id(self, delivery_id: DeliveryID) -> Delivery | None:
        with self.engine.connect() as conn:
            payload = conn.execute(
                select(deliveries_table.c.payload).where(deliveries_table.c.id == str(delivery_id))
            ).scalar_one_or_none()
        return _decode(payload) if payload is not None else None

    def get_by_order_number(self, order_number: OrderNumber) -> Delivery | None:
        with self.engine.connect() as conn:
            payload = conn.execute(
                select(deliveries_table.c.payload).where(
                    deliveries_table.c.order_number == str(order_number)
                )
            ).scalar_one_or_none()
        return _decode(payload) if payload is not None else None

    def conditional_update(
        self, delivery_id: DeliveryID, expected_version: int, mutator: Mutator
    ) -> Delivery:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(deliveries_table.c.payload, deliveries_table.c.version).where(
                    deliveries_table.c.id == str(delivery_id)
                )
            ).first()
            if row is None:
                raise DeliveryNotFound(f"Delivery {delivery_id} not found")
            if row.version != expected_version:
                raise VersionConflict(delivery_id, expected_version, row.version)

            updated = apply_mutation(_decode(row.payload), expected_version, mutator)
            values = _row_values(updated)
            del values["id"]
            result = conn.execute(
                update(deliveries_table)
                .where(
                    deliveries_table.c.id == str(delivery_id),
                    deliveries_table.c.version == expected_version,
                )
                .values(**values)
            )
            if result.rowcount == 0:
                actual = conn.execute(
                    select(deliveries_table.c.version).where(
                        deliveries_table.c.id == str(delivery_id)
                    )
                ).scalar_one_or_none()
                raise VersionConflict(delivery_id, expected_version, actual)
        return updated

    def list_by_status(
        self, status: DeliveryStatus, older_than: datetime | None = None
    ) -> list[Delivery]:
        query = select(deliveries_table.c.payload).where(deliveries_table.c.status == status.value)
        if older_than is not None:
            query = query.where(deliveries_table.c.status_since < _utc_naive(older_than))
        query = query.order_by(deliveries_table.c.status_since, deliveries_table.c.id)
        with self.engine.connect() as conn:
            return [_decode(payload) for payload in conn.execute(query).scalars()]

    def list_by_courier(self, courier_id: CourierID) -> list[Delivery]:
        query = (
            select(deliveries_table.c.payload)
            .where(deliveries_table.c.courier_id == str(courier_id))
            .order_by(deliveries_table.c.id)
        )
        with self.engine.connect() as conn:
            return [_decode(payload) for payload in conn.execute(query).scalars()]

    def dispose(self) -> None:
        self.engine.dispose()
