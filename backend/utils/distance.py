"""
Great-circle distance with memoization.

Nearby-report searches and dispatch compare every located report against every
active operation, so identical coordinate pairs repeat often.
"""
import math
from functools import lru_cache

# Earth's mean radius in kilometers
EARTH_RADIUS_KM = 6371.0


@lru_cache(maxsize=10000)
def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Distance between two points in kilometers using the Haversine formula.

    Does NOT validate coordinates - caller is responsible for validation.

    Examples:
        >>> round(haversine_km(-6.2088, 106.8456, -6.9175, 107.6191), 1)  # Jakarta -> Bandung
        116.3
        >>> haversine_km(-6.2, 106.8, -6.2, 106.8)
        0.0
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2) - math.radians(lon1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def clear_distance_cache() -> None:
    """Clear the haversine_km LRU cache."""
    haversine_km.cache_clear()
