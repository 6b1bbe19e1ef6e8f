"""
Tests for distance and geofence helpers.
"""
import math

import pytest
from utils.distance import clear_distance_cache, haversine_km
from utils.geo import (
    distance_km, is_point_in_polygon, is_valid_coordinates, is_within_geofence, is_within_radius,
    is_within_zones
)

JAKARTA = (-6.2088, 106.8456)
BANDUNG = (-6.9175, 107.6191)

# Rough square around central Jakarta
JAKARTA_SQUARE = [
    {'lat': -6.10, 'lng': 106.70},
    {'lat': -6.10, 'lng': 106.95},
    {'lat': -6.35, 'lng': 106.95},
    {'lat': -6.35, 'lng': 106.70},
]


class TestHaversine:

    def setup_method(self):
        clear_distance_cache()

    def test_jakarta_to_bandung(self):
        assert haversine_km(*JAKARTA, *BANDUNG) == pytest.approx(116, abs=3)

    def test_same_point(self):
        assert haversine_km(*JAKARTA, *JAKARTA) == 0

    def test_one_degree_of_latitude(self):
        assert haversine_km(0, 0, 1, 0) == pytest.approx(111.19, abs=0.1)

    def test_symmetric(self):
        assert haversine_km(*JAKARTA, *BANDUNG) == pytest.approx(haversine_km(*BANDUNG, *JAKARTA))


class TestCoordinates:

    def test_valid(self):
        assert is_valid_coordinates(*JAKARTA) is True
        assert is_valid_coordinates('-6.2', '106.8') is True
        assert is_valid_coordinates(0, 0) is True

    def test_invalid(self):
        assert is_valid_coordinates(None, 106.8) is False
        assert is_valid_coordinates(-91, 0) is False
        assert is_valid_coordinates(0, 181) is False
        assert is_valid_coordinates(math.nan, 0) is False
        assert is_valid_coordinates(0, math.inf) is False

    def test_distance_rejects_invalid_input(self):
        with pytest.raises(ValueError):
            distance_km(100, 0, 0, 0)

    def test_within_radius_is_inclusive(self):
        one_degree = haversine_km(0, 0, 1, 0)
        assert is_within_radius(1, 0, 0, 0, one_degree) is True
        assert is_within_radius(1, 0, 0, 0, one_degree - 0.01) is False


class TestPolygon:

    def test_point_inside(self):
        assert is_point_in_polygon({'lat': JAKARTA[0], 'lng': JAKARTA[1]}, JAKARTA_SQUARE) is True

    def test_point_outside(self):
        assert is_point_in_polygon({'lat': BANDUNG[0], 'lng': BANDUNG[1]}, JAKARTA_SQUARE) is False

    def test_degenerate_polygon(self):
        assert is_point_in_polygon({'lat': -6.2, 'lng': 106.8}, JAKARTA_SQUARE[:2]) is False
        assert is_point_in_polygon({'lat': -6.2, 'lng': 106.8}, None) is False

    def test_concave_polygon(self):
        # U shape open to the north
        u_shape = [
            {'lat': 0, 'lng': 0}, {'lat': 3, 'lng': 0}, {'lat': 3, 'lng': 1},
            {'lat': 1, 'lng': 1}, {'lat': 1, 'lng': 2}, {'lat': 3, 'lng': 2},
            {'lat': 3, 'lng': 3}, {'lat': 0, 'lng': 3},
        ]
        assert is_point_in_polygon({'lat': 2, 'lng': 0.5}, u_shape) is True
        assert is_point_in_polygon({'lat': 2, 'lng': 1.5}, u_shape) is False


class TestGeofence:

    def test_polygon_takes_precedence(self):
        project = {'geofence_polygon': JAKARTA_SQUARE, 'latitude': BANDUNG[0],
                   'longitude': BANDUNG[1], 'geofence_radius_km': 5}
        assert is_within_geofence(*JAKARTA, project) == (True, None)
        assert is_within_geofence(*BANDUNG, project) == \
            (False, 'Location is outside the designated disaster area')

    def test_radius(self):
        project = {'latitude': JAKARTA[0], 'longitude': JAKARTA[1], 'geofence_radius_km': 5}
        assert is_within_geofence(-6.21, 106.85, project) == (True, None)
        assert is_within_geofence(*BANDUNG, project) == \
            (False, 'Location is outside the 5km radius of the disaster center')

    def test_short_polygon_falls_back_to_radius(self):
        project = {'geofence_polygon': JAKARTA_SQUARE[:2], 'latitude': JAKARTA[0],
                   'longitude': JAKARTA[1], 'geofence_radius_km': 5}
        assert is_within_geofence(*BANDUNG, project)[0] is False

    def test_no_geofence_accepts_everything(self):
        assert is_within_geofence(*BANDUNG, {}) == (True, None)


class TestZones:

    ZONES = [
        {'zone_name': 'Jakarta Pusat', 'latitude': JAKARTA[0], 'longitude': JAKARTA[1], 'radius_km': 5},
        {'zone_name': 'Bandung', 'latitude': BANDUNG[0], 'longitude': BANDUNG[1], 'radius_km': 3},
    ]

    def test_inside_any_zone(self):
        assert is_within_zones(-6.21, 106.85, self.ZONES) == (True, None)
        assert is_within_zones(-6.92, 107.62, self.ZONES) == (True, None)

    def test_outside_every_zone(self):
        assert is_within_zones(-7.7956, 110.3695, self.ZONES) == \
            (False, 'Location is outside every designated zone (Jakarta Pusat, Bandung)')

    def test_inactive_and_broken_zones_are_ignored(self):
        zones = [{**self.ZONES[0], 'is_active': False}, {'zone_name': 'Rusak', 'latitude': None,
                                                          'longitude': 107.0, 'radius_km': 5}]
        assert is_within_zones(*BANDUNG, zones) == (True, None)

    def test_inactive_zone_not_named(self):
        zones = [{**self.ZONES[0], 'is_active': False}, self.ZONES[1]]
        assert is_within_zones(*JAKARTA, zones) == (False, 'Location is outside every designated zone (Bandung)')
