"""FastAPI surface over the dispatch service."""

import logging
from datetime import timedelta
from typing import Any

import orjson
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError

from core.errors import (
    ConflictError,
    DependencyUnavailable,
    DispatchError,
    ErrorKind,
    InvalidRequest,
    InvalidStateError,
    NotAssignedCourier,
    NotEligible,
    NotFoundError,
)
from core.events import Actor
from core.types import CourierID, DeliveryID, DeliveryStatus, OrderNumber

from ..dto import AdvanceDTO, CancelDTO, ClaimDTO, CompleteDTO, CreateDeliveryDTO, SweepDTO
from ..service import DispatchService


def status_code_for(error: DispatchError) -> int:
    """HTTP status for a dispatch error; order matters for overlapping classes."""
    if isinstance(error, (NotEligible, NotAssignedCourier)):
        return 403
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, (ConflictError, InvalidStateError)):
        return 409
    if isinstance(error, DependencyUnavailable):
        return 503
    if isinstance(error, InvalidRequest):
        return 422
    return 400


def json_response(content: Any, status_code: int = 200) -> Response:
    return Response(
        content=orjson.dumps(content), status_code=status_code, media_type="application/json"
    )


def error_body(error: DispatchError) -> dict[str, Any]:
    return {
        "error": error.kind.value,
        "type": type(error).__name__,
        "message": str(error),
        "retryable": error.retryable,
    }


class DispatchHttpServer:
    """HTTP routes for the dispatch operations."""

    def __init__(self, service: DispatchService, logger: logging.Logger | None = None) -> None:
        self.service = service
        self.logger = logger or logging.getLogger(__name__)
        self.app = FastAPI(title="Delivery Dispatch API")
        self._setup_error_handlers()
        self._setup_routes()

    def get_app(self) -> FastAPI:
        return self.app

    def _setup_error_handlers(self) -> None:
        @self.app.exception_handler(DispatchError)
        async def handle_dispatch_error(_request: Request, exc: DispatchError) -> Response:
            status = status_code_for(exc)
            if status >= 500:
                self.logger.warning(f"Dependency failure: {exc}")
            return json_response(error_body(exc), status_code=status)

        @self.app.exception_handler(RequestValidationError)
        async def handle_validation_error(
            _request: Request, exc: RequestValidationError
        ) -> Response:
            body = {
                "error": ErrorKind.INVALID_REQUEST.value,
                "type": "RequestValidationError",
                "message": "; ".join(
                    f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
                    for err in exc.errors()
                ),
                "retryable": False,
            }
            return json_response(body, status_code=422)

    def _setup_routes(self) -> None:
        app = self.app
        service = self.service

        @app.get("/health")
        def health() -> Response:
            return json_response({"status": "ok"})

        @app.post("/deliveries")
        def create_delivery(body: CreateDeliveryDTO) -> Response:
            result = service.create_delivery(body.to_request())
            return json_response(
                {
                    "delivery": result.delivery.to_dict(),
                    "pricing": result.pricing.to_dict(),
                    "notifications": [n.to_dict() for n in result.notifications],
                },
                status_code=201,
            )

        @app.get("/deliveries")
        def list_deliveries(status: DeliveryStatus) -> Response:
            return json_response([d.to_dict() for d in service.list_deliveries(status)])

        @app.get("/deliveries/by-order/{order_number}")
        def get_by_order_number(order_number: str) -> Response:
            delivery = service.get_delivery_by_order_number(OrderNumber(order_number))
            return json_response(delivery.to_dict())

        @app.get("/deliveries/{delivery_id}")
        def get_delivery(delivery_id: str) -> Response:
            return json_response(service.get_delivery(DeliveryID(delivery_id)).to_dict())

        @app.post("/deliveries/{delivery_id}/claim")
        def claim_delivery(delivery_id: str, body: ClaimDTO) -> Response:
            delivery = service.claim_delivery(DeliveryID(delivery_id), CourierID(body.courier_id))
            return json_response(delivery.to_dict())

        @app.post("/deliveries/{delivery_id}/advance")
        def advance_delivery(delivery_id: str, body: AdvanceDTO) -> Response:
            delivery = service.advance_delivery(
                DeliveryID(delivery_id), CourierID(body.courier_id), body.target_status
            )
            return json_response(delivery.to_dict())

        @app.post("/deliveries/{delivery_id}/cancel")
        def cancel_delivery(delivery_id: str, body: CancelDTO) -> Response:
            actor = Actor.system() if body.as_system else Actor.operator(body.operator_id)
            delivery = service.cancel_delivery(DeliveryID(delivery_id), actor, body.reason)
            return json_response(delivery.to_dict())

        @app.post("/deliveries/{delivery_id}/complete")
        def complete_delivery(delivery_id: str, body: CompleteDTO) -> Response:
            actor = Actor.operator(body.operator_id) if body.operator_id else Actor.system()
            delivery = service.complete_delivery(
                DeliveryID(delivery_id), actor, proof_of_delivery=body.proof_of_delivery
            )
            return json_response(delivery.to_dict())

        @app.get("/deliveries/{delivery_id}/recommendations")
        def recommend_couriers(delivery_id: str, limit: int | None = None) -> Response:
            ranked = service.recommend_couriers(DeliveryID(delivery_id), limit=limit)
            return json_response([r.to_dict() for r in ranked])

        @app.get("/deliveries/{delivery_id}/notifications")
        def list_notifications(delivery_id: str) -> Response:
            service.get_delivery(DeliveryID(delivery_id))
            entries = service.notifier.log.entries(DeliveryID(delivery_id))
            return json_response([e.to_dict() for e in entries])

        @app.post("/sweeps")
        def sweep(body: SweepDTO | None = None) -> Response:
            ttl = timedelta(minutes=body.ttl_minutes) if body and body.ttl_minutes else None
            cancelled = service.sweep_expired(ttl=ttl)
            self.logger.info(f"Manual sweep cancelled {cancelled} deliveries")
            return json_response({"cancelled": cancelled})

        @app.post("/reminders")
        def remind() -> Response:
            report = service.send_reminders()
            return json_response({"pending": report.pending, "stuck": report.stuck})
