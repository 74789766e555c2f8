from dispatch.pricing.distance import DistanceProvider, HaversineDistanceProvider
from dispatch.pricing.engine import PricingEngine, estimate_minutes, is_night_time
from dispatch.pricing.zones import (
    DEFAULT_ZONES,
    Zone,
    ZoneBounds,
    ZoneRate,
    ZoneTable,
    load_zone_table,
)

__all__ = [
    "DEFAULT_ZONES",
    "DistanceProvider",
    "HaversineDistanceProvider",
    "PricingEngine",
    "Zone",
    "ZoneBounds",
    "ZoneRate",
    "ZoneTable",
    "estimate_minutes",
    "is_night_time",
    "load_zone_table",
]
