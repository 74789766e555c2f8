"""Advisory courier ranking for a delivery."""

from dataclasses import dataclass
from typing import Any

from core.courier import Courier
from core.delivery import Delivery
from core.geo import Coordinates, haversine_km
from core.types import CourierID, VehicleType

# Beyond this pickup distance a courier gets no proximity credit
PROXIMITY_HORIZON_KM = 50.0


@dataclass(frozen=True)
class CourierCandidate:
    """The slice of a courier the recommender looks at."""

    courier_id: CourierID
    vehicle_type: VehicleType
    rating: float
    completion_rate: float
    coordinates: Coordinates | None = None

    @classmethod
    def from_courier(cls, courier: Courier) -> "CourierCandidate":
        return cls(
            courier_id=courier.id,
            vehicle_type=courier.vehicle_type,
            rating=courier.rating,
            completion_rate=courier.completion_rate,
            coordinates=courier.coordinates,
        )


@dataclass(frozen=True)
class RecommenderWeights:
    rating: float = 0.4
    completion: float = 0.3
    proximity: float = 0.3


@dataclass(frozen=True)
class Recommendation:
    courier_id: CourierID
    score: float
    rating_score: float
    completion_score: float
    proximity_score: float
    distance_km: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "courier_id": str(self.courier_id),
            "score": self.score,
            "rating_score": self.rating_score,
            "completion_score": self.completion_score,
            "proximity_score": self.proximity_score,
            "distance_km": self.distance_km,
        }


class CourierRecommender:
    """Ranks candidates by rating, completion rate and distance to pickup.

    Pure and deterministic: equal scores are ordered by courier id. The
    ranking is advice only; assignment still goes through the claim path.
    """

    def __init__(self, weights: RecommenderWeights | None = None) -> None:
        self.weights = weights or RecommenderWeights()

    def score(self, delivery: Delivery, candidate: CourierCandidate) -> Recommendation:
        rating_score = max(0.0, min(candidate.rating, 5.0)) / 5.0
        completion_score = max(0.0, min(candidate.completion_rate, 1.0))

        distance_km: float | None = None
        proximity_score = 0.0
        pickup = delivery.pickup.coordinates
        if pickup is not None and candidate.coordinates is not None:
            distance_km = round(haversine_km(candidate.coordinates, pickup), 3)
            proximity_score = max(0.0, 1.0 - distance_km / PROXIMITY_HORIZON_KM)

        total = (
            self.weights.rating * rating_score
            + self.weights.completion * completion_score
            + self.weights.proximity * proximity_score
        )
        return Recommendation(
            courier_id=candidate.courier_id,
            score=round(total, 6),
            rating_score=round(rating_score, 6),
            completion_score=round(completion_score, 6),
            proximity_score=round(proximity_score, 6),
            distance_km=distance_km,
        )

    def recommend(
        self,
        delivery: Delivery,
        candidates: list[CourierCandidate],
        limit: int | None = None,
    ) -> list[Recommendation]:
        """Score candidates that drive the required vehicle, best first."""
        ranked = sorted(
            (self.score(delivery, c) for c in candidates if c.vehicle_type == delivery.vehicle_type),
            key=lambda r: (-r.score, r.courier_id),
        )
        return ranked[:limit] if limit is not None else ranked
