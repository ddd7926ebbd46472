"""Great-circle distance and delivery pricing."""
import math

EARTH_RADIUS_KM = 6371.0
MINIMUM_DELIVERY_FEE = 3.0


def distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance between two WGS84 points, in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def round_delivery_cost(amount: float) -> float:
    """Round up to the next 0.5 currency unit."""
    return math.ceil(amount * 2) / 2


def delivery_cost(distance: float, rate_per_km: float) -> float:
    """Distance times rate, never below the fixed minimum fee, rounded up to 0.5."""
    return round_delivery_cost(max(distance * rate_per_km, MINIMUM_DELIVERY_FEE))
