"""
Geospatial helpers: coordinate validation, radius checks and geofences.

Used by operation nearby-report searches, report dispatch and crowdsourcing
submission geofencing.
"""
import math
from typing import Dict, List, Optional, Tuple
from shapely.geometry import Point, Polygon

from utils.distance import haversine_km


def is_valid_coordinates(latitude, longitude) -> bool:
    """
    Validate geographic coordinates.

    Equator and prime meridian (0) are valid, as are the poles and the
    antimeridian. NaN, infinity and non-numeric values are not.

    Examples:
        >>> is_valid_coordinates(-6.2088, 106.8456)
        True
        >>> is_valid_coordinates(0, 0)
        True
        >>> is_valid_coordinates(91, 0)
        False
        >>> is_valid_coordinates('abc', 0)
        False
    """
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        return False

    if math.isnan(lat) or math.isnan(lon) or math.isinf(lat) or math.isinf(lon):
        return False

    return -90 <= lat <= 90 and -180 <= lon <= 180


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Validated great-circle distance in kilometers.

    Raises:
        ValueError: If either coordinate pair is invalid
    """
    if not is_valid_coordinates(lat1, lon1) or not is_valid_coordinates(lat2, lon2):
        raise ValueError(f"Invalid coordinates: ({lat1}, {lon1}) or ({lat2}, {lon2})")

    return haversine_km(float(lat1), float(lon1), float(lat2), float(lon2))


def is_within_radius(point_lat: float, point_lng: float,
                     center_lat: float, center_lng: float, radius_km: float) -> bool:
    """Check whether a point lies within radius_km of a center (boundary inclusive)."""
    return distance_km(point_lat, point_lng, center_lat, center_lng) <= radius_km


def is_point_in_polygon(point: Dict[str, float], polygon: Optional[List[Dict[str, float]]]) -> bool:
    """
    Point-in-polygon test (shapely; points on the boundary are outside).

    Args:
        point: {'lat': ..., 'lng': ...}
        polygon: list of {'lat': ..., 'lng': ...} vertices (closed implicitly)

    Returns:
        False for polygons with fewer than 3 vertices.
    """
    if not polygon or len(polygon) < 3:
        return False

    # shapely works in (x, y) = (lng, lat)
    area = Polygon([(vertex['lng'], vertex['lat']) for vertex in polygon])
    return area.contains(Point(point['lng'], point['lat']))


def is_within_geofence(lat: float, lng: float, project: Dict) -> Tuple[bool, Optional[str]]:
    """
    Validate a location against a crowdsourcing project's geofence.

    A polygon (3+ vertices) takes precedence over a center + radius. Projects
    with neither accept every location.

    Returns:
        Tuple of (is_valid, error_message)
    """
    polygon = project.get('geofence_polygon')
    if polygon and len(polygon) >= 3:
        valid = is_point_in_polygon({'lat': lat, 'lng': lng}, polygon)
        return valid, None if valid else 'Location is outside the designated disaster area'

    center_lat = project.get('latitude')
    center_lng = project.get('longitude')
    radius_km = project.get('geofence_radius_km')
    if center_lat is not None and center_lng is not None and radius_km:
        valid = is_within_radius(lat, lng, center_lat, center_lng, radius_km)
        return valid, None if valid else f'Location is outside the {radius_km}km radius of the disaster center'

    return True, None


def is_within_zones(lat: float, lng: float, zones: List[Dict]) -> Tuple[bool, Optional[str]]:
    """
    Validate a location against a project's geofence zones.

    Each active zone is a center with a radius; a point inside any zone is
    valid. Without active zones every location is accepted.
    """
    active = [z for z in zones if z.get('is_active', True)
              and is_valid_coordinates(z.get('latitude'), z.get('longitude')) and z.get('radius_km')]
    if not active:
        return True, None

    for zone in active:
        if is_within_radius(lat, lng, zone['latitude'], zone['longitude'], zone['radius_km']):
            return True, None

    names = ', '.join(z.get('zone_name') or 'zona' for z in active)
    return False, f'Location is outside every designated zone ({names})'
