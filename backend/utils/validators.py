"""
Validation utilities for citizen reports, operations and field activity.

Provides centralized validation logic for:
- Coordinates
- Enumerated values (disaster types, assistance types, statuses, ...)
- Complete payload validation for emergency reports, contributions,
  operations, field reports and assignments

Payload validators return (is_valid, error_message) and never raise.
"""
import re
from typing import Dict, List, Optional, Tuple

import bleach

from utils.url_validator import validate_media_url


DISASTER_TYPES = [
    'flood', 'flash_flood', 'tidal_flood', 'earthquake', 'landslide', 'fire',
    'forest_fire', 'tsunami', 'volcanic', 'cyclone', 'tornado', 'extreme_weather'
]

ASSISTANCE_TYPES = ['evacuation', 'food_water', 'medical', 'other', 'none']
CONTRIBUTION_TYPES = ['shelter', 'food_water', 'medical', 'clothing']

REPORT_STATUSES = ['needs_verification', 'active', 'resolved']
CONTRIBUTION_STATUSES = ['pending', 'verified', 'assigned', 'rejected']
DISPATCH_STATUSES = ['unassigned', 'dispatched', 'acknowledged', 'assigned', 'in_progress', 'resolved']

OPERATION_STATUSES = ['active', 'completed', 'suspended']
TEAM_MEMBER_ROLES = ['coordinator', 'responder']
TEAM_MEMBER_STATUSES = ['invited', 'accepted', 'declined']

ASSIGNMENT_STATUSES = ['pending', 'accepted', 'in_progress', 'completed', 'declined']
ASSIGNMENT_PRIORITIES = ['low', 'normal', 'high', 'urgent']

FIELD_REPORT_CATEGORIES = ['aid_delivery', 'field_condition', 'incident']
SEVERITIES = ['mild', 'moderate', 'severe']
URGENCIES = ['low', 'medium', 'high', 'critical']

AID_DELIVERY_SUBCATEGORIES = [
    'food_distribution', 'water_distribution', 'medical_supplies',
    'clothing', 'shelter_materials', 'other_aid'
]

INCIDENT_SUBCATEGORIES = [
    'medical_emergency', 'rescue_needed', 'security_issue',
    'crowd_gathering', 'other_incident'
]

FIELD_CONDITION_BY_DISASTER = {
    'flood': ['water_level', 'road_flooded', 'building_flooded', 'evacuation_needed'],
    'flash_flood': ['water_level', 'road_flooded', 'building_flooded', 'evacuation_needed', 'debris'],
    'tidal_flood': ['water_level', 'road_flooded', 'building_flooded'],
    'earthquake': ['building_damage', 'road_crack', 'bridge_damage', 'aftershock', 'trapped_victim'],
    'landslide': ['road_blocked', 'building_buried', 'evacuation_needed', 'unstable_area'],
    'fire': ['fire_spread', 'building_burned', 'evacuation_needed', 'smoke_hazard'],
    'forest_fire': ['fire_spread', 'smoke_hazard', 'evacuation_needed', 'wildlife_affected'],
    'tsunami': ['water_level', 'building_damage', 'debris', 'evacuation_needed'],
    'volcanic': ['lava_flow', 'ash_fall', 'evacuation_needed', 'air_quality'],
    'cyclone': ['building_damage', 'road_blocked', 'power_outage', 'flooding'],
    'tornado': ['building_damage', 'road_blocked', 'debris', 'power_outage'],
    'extreme_weather': ['flooding', 'road_blocked', 'power_outage', 'building_damage'],
}

DESCRIPTION_MIN_LENGTH = 10
DESCRIPTION_MAX_LENGTH = 2000
NAME_MAX_LENGTH = 100

# 8-15 digits after removing spaces, dashes and parentheses; optional leading +
PHONE_PATTERN = re.compile(r'^\+?\d{8,15}$')
EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


def sanitize_text(value, max_length: Optional[int] = None) -> str:
    """
    Strip HTML from user text and trim whitespace.

    Examples:
        >>> sanitize_text('<b>Banjir</b> setinggi lutut ')
        'Banjir setinggi lutut'
        >>> sanitize_text(None)
        ''
    """
    if value is None:
        return ''
    cleaned = bleach.clean(str(value), tags=[], strip=True).strip()
    if max_length is not None:
        cleaned = cleaned[:max_length]
    return cleaned


def _choice_error(field: str, value, choices: List[str]) -> Optional[str]:
    if value not in choices:
        return f'Invalid {field}. Must be one of: {", ".join(choices)}'
    return None


class CoordinateValidator:
    """Validator for geographic coordinates."""

    @staticmethod
    def validate_coordinates(lat, lon) -> bool:
        """
        Examples:
            >>> CoordinateValidator.validate_coordinates(-6.2088, 106.8456)
            True
            >>> CoordinateValidator.validate_coordinates(0, 181)
            False
        """
        try:
            latitude = float(lat)
            longitude = float(lon)
            return -90 <= latitude <= 90 and -180 <= longitude <= 180
        except (TypeError, ValueError):
            return False

    @staticmethod
    def validate_pair(data: Dict, lat_key: str = 'latitude',
                      lon_key: str = 'longitude', required: bool = True) -> Tuple[bool, Optional[str]]:
        """
        Validate a latitude/longitude pair inside a payload.

        Optional pairs may be absent entirely, but not half-present.
        """
        lat = data.get(lat_key)
        lon = data.get(lon_key)

        if lat is None and lon is None:
            if required:
                return False, f'{lat_key} and {lon_key} are required'
            return True, None
        if lat is None or lon is None:
            return False, f'{lat_key} and {lon_key} must be provided together'

        try:
            lat_value = float(lat)
        except (TypeError, ValueError):
            return False, f'{lat_key} must be a valid number'
        try:
            lon_value = float(lon)
        except (TypeError, ValueError):
            return False, f'{lon_key} must be a valid number'

        if not -90 <= lat_value <= 90:
            return False, f'{lat_key} must be between -90 and 90'
        if not -180 <= lon_value <= 180:
            return False, f'{lon_key} must be between -180 and 180'
        return True, None


class ContactValidator:
    """Phone and e-mail checks for citizen submissions."""

    @staticmethod
    def validate_phone(phone: str) -> bool:
        """
        Examples:
            >>> ContactValidator.validate_phone('0812-3456-7890')
            True
            >>> ContactValidator.validate_phone('+62 812 3456 7890')
            True
            >>> ContactValidator.validate_phone('12345')
            False
        """
        if not phone:
            return False
        compact = re.sub(r'[\s\-()]', '', str(phone))
        return bool(PHONE_PATTERN.match(compact))

    @staticmethod
    def validate_email(email: str) -> bool:
        if not email:
            return False
        return bool(EMAIL_PATTERN.match(str(email).strip()))


class ReportValidator:
    """Validators for citizen emergency reports and contributions."""

    @staticmethod
    def _validate_common(data: Dict) -> Tuple[bool, Optional[str]]:
        missing = [f for f in ('full_name', 'phone_number', 'description') if not data.get(f)]
        if missing:
            return False, f'Missing required fields: {", ".join(missing)}'

        ok, error = CoordinateValidator.validate_pair(data)
        if not ok:
            return False, error

        if len(str(data['full_name'])) > NAME_MAX_LENGTH:
            return False, f'full_name must be at most {NAME_MAX_LENGTH} characters'

        if not ContactValidator.validate_phone(data['phone_number']):
            return False, 'Invalid phone number'

        if data.get('email') and not ContactValidator.validate_email(data['email']):
            return False, 'Invalid email format'

        description = str(data['description']).strip()
        if not DESCRIPTION_MIN_LENGTH <= len(description) <= DESCRIPTION_MAX_LENGTH:
            return False, (f'Description must be between {DESCRIPTION_MIN_LENGTH} '
                           f'and {DESCRIPTION_MAX_LENGTH} characters')

        ok, error = validate_media_url(data.get('photo_url'))
        if not ok:
            return False, f'Invalid photo_url: {error}'

        return True, None

    @staticmethod
    def validate_emergency_report(data: Dict) -> Tuple[bool, Optional[str]]:
        """
        Validate a citizen emergency report.

        Examples:
            >>> ReportValidator.validate_emergency_report({
            ...     'full_name': 'Siti', 'phone_number': '081234567890',
            ...     'description': 'Air masuk rumah setinggi dada',
            ...     'assistance_type': 'evacuation',
            ...     'latitude': -6.2, 'longitude': 106.8})
            (True, None)
        """
        ok, error = ReportValidator._validate_common(data)
        if not ok:
            return False, error

        error = _choice_error('assistance_type', data.get('assistance_type'), ASSISTANCE_TYPES)
        if error:
            return False, error

        return True, None

    @staticmethod
    def validate_contribution(data: Dict) -> Tuple[bool, Optional[str]]:
        """
        Validate an offer of aid.

        Shelters need a positive capacity; goods (food_water, medical,
        clothing) need a quantity and unit. Consent to publish is mandatory.
        """
        ok, error = ReportValidator._validate_common(data)
        if not ok:
            return False, error

        contribution_type = data.get('contribution_type')
        error = _choice_error('contribution_type', contribution_type, CONTRIBUTION_TYPES)
        if error:
            return False, error

        if contribution_type == 'shelter':
            try:
                capacity = int(data.get('capacity'))
            except (TypeError, ValueError):
                return False, 'capacity is required for shelter contributions'
            if capacity <= 0:
                return False, 'capacity must be a positive number'
            facilities = data.get('facilities')
            if facilities is not None and not isinstance(facilities, list):
                return False, 'facilities must be a list'
        else:
            try:
                quantity = float(data.get('quantity'))
            except (TypeError, ValueError):
                return False, 'quantity is required for this contribution type'
            if quantity <= 0:
                return False, 'quantity must be a positive number'
            if not data.get('unit'):
                return False, 'unit is required for this contribution type'

        if not data.get('consent_statement'):
            return False, 'consent_statement is required'

        return True, None


class OperationValidator:
    """Validators for response operations, field reports and assignments."""

    @staticmethod
    def validate_operation(data: Dict) -> Tuple[bool, Optional[str]]:
        """
        Validate an operation creation payload.

        Examples:
            >>> OperationValidator.validate_operation({
            ...     'name': 'Banjir Bekasi', 'disaster_type': 'flood',
            ...     'disaster_location_name': 'Bekasi',
            ...     'disaster_lat': -6.24, 'disaster_lng': 106.99})
            (True, None)
            >>> OperationValidator.validate_operation({'name': 'X'})[0]
            False
        """
        required = ['name', 'disaster_type', 'disaster_location_name', 'disaster_lat', 'disaster_lng']
        missing = [f for f in required if data.get(f) in (None, '')]
        if missing:
            return False, f'Missing required fields: {", ".join(missing)}'

        error = _choice_error('disaster_type', data['disaster_type'], DISASTER_TYPES)
        if error:
            return False, error

        ok, error = CoordinateValidator.validate_pair(data, 'disaster_lat', 'disaster_lng')
        if not ok:
            return False, error

        return OperationValidator.validate_operation_update(data)

    @staticmethod
    def validate_operation_update(data: Dict) -> Tuple[bool, Optional[str]]:
        if data.get('disaster_radius_km') is not None:
            try:
                radius = float(data['disaster_radius_km'])
            except (TypeError, ValueError):
                return False, 'disaster_radius_km must be a number'
            if radius <= 0:
                return False, 'disaster_radius_km must be greater than 0'

        if 'posko_lat' in data or 'posko_lng' in data:
            ok, error = CoordinateValidator.validate_pair(data, 'posko_lat', 'posko_lng', required=False)
            if not ok:
                return False, error

        if data.get('status') is not None:
            error = _choice_error('status', data['status'], OPERATION_STATUSES)
            if error:
                return False, error

        return True, None

    @staticmethod
    def subcategories_for(category: str, disaster_type: Optional[str] = None) -> List[str]:
        """Allowed subcategories for a field report category."""
        if category == 'aid_delivery':
            return list(AID_DELIVERY_SUBCATEGORIES)
        if category == 'incident':
            return list(INCIDENT_SUBCATEGORIES)
        if category == 'field_condition':
            if disaster_type in FIELD_CONDITION_BY_DISASTER:
                return list(FIELD_CONDITION_BY_DISASTER[disaster_type])
            merged = []
            for values in FIELD_CONDITION_BY_DISASTER.values():
                merged.extend(v for v in values if v not in merged)
            return merged
        return []

    @staticmethod
    def validate_field_report(data: Dict, disaster_type: Optional[str] = None) -> Tuple[bool, Optional[str]]:
        """
        Validate a field report against its category and the operation's
        disaster type.
        """
        if not data.get('category') or not data.get('title'):
            return False, 'category and title are required'

        category = data['category']
        error = _choice_error('category', category, FIELD_REPORT_CATEGORIES)
        if error:
            return False, error

        subcategory = data.get('subcategory')
        if subcategory:
            allowed = OperationValidator.subcategories_for(category, disaster_type)
            if subcategory not in allowed:
                return False, f'Invalid subcategory for {category}. Must be one of: {", ".join(allowed)}'

        for field, choices in (('severity', SEVERITIES), ('urgency', URGENCIES)):
            if data.get(field) is not None:
                error = _choice_error(field, data[field], choices)
                if error:
                    return False, error

        ok, error = CoordinateValidator.validate_pair(data, required=False)
        if not ok:
            return False, error

        if data.get('affected_count') is not None:
            try:
                if int(data['affected_count']) < 0:
                    return False, 'affected_count cannot be negative'
            except (TypeError, ValueError):
                return False, 'affected_count must be an integer'

        photos = data.get('photos')
        if photos is not None:
            if not isinstance(photos, list):
                return False, 'photos must be a list'
            for photo in photos:
                ok, error = validate_media_url(photo)
                if not ok:
                    return False, f'Invalid photo: {error}'

        return True, None

    @staticmethod
    def validate_assignment(data: Dict) -> Tuple[bool, Optional[str]]:
        """
        Examples:
            >>> OperationValidator.validate_assignment({'report_id': 'r1', 'assigned_to': 'u1'})
            (True, None)
            >>> OperationValidator.validate_assignment({'report_id': 'r1'})
            (False, 'report_id and assigned_to are required')
        """
        if not data.get('report_id') or not data.get('assigned_to'):
            return False, 'report_id and assigned_to are required'

        if data.get('priority') is not None:
            error = _choice_error('priority', data['priority'], ASSIGNMENT_PRIORITIES)
            if error:
                return False, error

        if data.get('report_type') is not None:
            error = _choice_error('report_type', data['report_type'], ['emergency_report', 'contribution'])
            if error:
                return False, error

        return True, None
