"""
Per-project setup for crowdsourcing: extra form fields citizens fill in
alongside the caption, and geofence zones for projects that cover more
than one disaster area.
"""
import re
from firebase_admin import db
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse
import logging

from services.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from utils.geo import is_valid_coordinates
from utils.rbac import is_admin
from utils.records import as_bool, now_iso, snapshot_to_list, with_id
from utils.validators import ContactValidator, sanitize_text

logger = logging.getLogger(__name__)

FIELD_TYPES = ['text', 'textarea', 'number', 'select', 'checkbox', 'radio',
               'date', 'time', 'email', 'phone', 'url', 'address']
CHOICE_TYPES = ('select', 'radio', 'checkbox')
FIELD_NAME_PATTERN = re.compile(r'^[a-z][a-z0-9_]{0,49}$')
DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
TIME_PATTERN = re.compile(r'^\d{2}:\d{2}$')

# Form keys the built-in submission form already uses
RESERVED_FIELD_NAMES = {
    'media', 'media_type', 'caption', 'latitude', 'longitude', 'address', 'address_detail',
    'submitter_name', 'submitter_email', 'submitter_whatsapp', 'location_uncertain',
    'location_level', 'consent_publish_name',
}

FIELD_TEXT_LIMITS = {'field_label': 200, 'placeholder': 200, 'helper_text': 500, 'pattern': 200}
FIELD_NUMBER_KEYS = ('min_length', 'max_length', 'min_value', 'max_value', 'display_order')

ZONE_LEVELS = ['radius', 'kelurahan', 'kecamatan', 'kabupaten', 'provinsi']
DEFAULT_ZONE_RADIUS_KM = 5


def _number(value, field: str):
    if value in (None, ''):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a number')
    return int(number) if number.is_integer() else number


class ProjectSetupService:
    """Custom form fields and geofence zones of crowdsourcing projects"""

    @staticmethod
    def _require_admin(user: Optional[Dict]):
        if not is_admin(user):
            raise PermissionDeniedError('Forbidden')

    @staticmethod
    def _require_project(project_id: str) -> Dict:
        project = db.reference(f'crowdsource_projects/{project_id}').get()
        if not project:
            raise NotFoundError('Project not found')
        return project

    @staticmethod
    def _next_order(records: List[Dict]) -> int:
        return max([r.get('display_order') or 0 for r in records] or [0]) + 1

    # ----- form fields -----

    def list_fields(self, project_id: str, include_inactive: bool = False) -> List[Dict]:
        self._require_project(project_id)
        fields = snapshot_to_list(db.reference(f'crowdsource_form_fields/{project_id}').get())
        if not include_inactive:
            fields = [f for f in fields if f.get('is_active', True)]
        return sorted(fields, key=lambda f: f.get('display_order') or 0)

    def _clean_field(self, data: Dict, partial: bool = False) -> Dict:
        cleaned = {}
        if 'field_name' in data or not partial:
            name = (data.get('field_name') or '').strip()
            if not FIELD_NAME_PATTERN.match(name):
                raise ValidationError('field_name must be lowercase letters, digits or underscores')
            if name in RESERVED_FIELD_NAMES:
                raise ValidationError(f'field_name {name} is reserved')
            cleaned['field_name'] = name
        if 'field_type' in data or not partial:
            field_type = data.get('field_type') or 'text'
            if field_type not in FIELD_TYPES:
                raise ValidationError(f"Invalid field_type. Must be one of: {', '.join(FIELD_TYPES)}")
            cleaned['field_type'] = field_type

        for key, limit in FIELD_TEXT_LIMITS.items():
            if key in data:
                cleaned[key] = sanitize_text(data[key], limit) or None
        if not partial and not cleaned.get('field_label'):
            raise ValidationError('field_label is required')
        if partial and 'field_label' in cleaned and not cleaned['field_label']:
            raise ValidationError('field_label cannot be empty')

        for key in FIELD_NUMBER_KEYS:
            if key in data:
                cleaned[key] = _number(data[key], key)
        for key in ('is_required', 'is_active'):
            if key in data:
                cleaned[key] = as_bool(data[key])

        if 'options' in data:
            options = data['options'] or []
            if not isinstance(options, list):
                raise ValidationError('options must be a list')
            cleaned['options'] = [sanitize_text(o, 200) for o in options if sanitize_text(o, 200)]

        if cleaned.get('pattern'):
            try:
                re.compile(cleaned['pattern'])
            except re.error:
                raise ValidationError('pattern is not a valid regular expression')
        return cleaned

    def create_field(self, user: Dict, project_id: str, data: Dict) -> Dict:
        self._require_admin(user)
        self._require_project(project_id)

        record = {'is_required': False, 'is_active': True, 'options': []}
        record.update(self._clean_field(data or {}))
        if record['field_type'] in CHOICE_TYPES and record['field_type'] != 'checkbox' and not record['options']:
            raise ValidationError(f"{record['field_type']} fields need options")

        existing = self.list_fields(project_id, include_inactive=True)
        if any(f.get('field_name') == record['field_name'] for f in existing):
            raise ConflictError(f"Field {record['field_name']} already exists")
        if record.get('display_order') is None:
            record['display_order'] = self._next_order(existing)

        timestamp = now_iso()
        record.update({'created_at': timestamp, 'updated_at': timestamp})
        ref = db.reference(f'crowdsource_form_fields/{project_id}').push(record)
        logger.info(f"Form field {record['field_name']} added to project {project_id}")
        return {'id': ref.key, **record}

    def update_field(self, user: Dict, project_id: str, field_id: str, updates: Dict) -> Dict:
        self._require_admin(user)
        ref = db.reference(f'crowdsource_form_fields/{project_id}/{field_id}')
        field = ref.get()
        if not field:
            raise NotFoundError('Field not found')

        changes = self._clean_field(updates or {}, partial=True)
        if not changes:
            raise ValidationError('No fields to update')
        if 'field_name' in changes and changes['field_name'] != field.get('field_name'):
            others = self.list_fields(project_id, include_inactive=True)
            if any(f.get('field_name') == changes['field_name'] for f in others):
                raise ConflictError(f"Field {changes['field_name']} already exists")

        changes['updated_at'] = now_iso()
        ref.update(changes)
        return with_id(field_id, {**field, **changes})

    def reorder_fields(self, user: Dict, project_id: str, order: List[Dict]) -> List[Dict]:
        """order: [{'id': field_id, 'display_order': n}, ...]"""
        self._require_admin(user)
        self._require_project(project_id)
        if not isinstance(order, list) or not order:
            raise ValidationError('fields must be a non-empty list')

        known = db.reference(f'crowdsource_form_fields/{project_id}').get() or {}
        updates = {}
        for item in order:
            if not isinstance(item, dict) or item.get('id') not in known:
                raise ValidationError('Unknown field in ordering')
            updates[f"{item['id']}/display_order"] = _number(item.get('display_order'), 'display_order') or 0
        db.reference(f'crowdsource_form_fields/{project_id}').update(updates)
        return self.list_fields(project_id, include_inactive=True)

    def delete_field(self, user: Dict, project_id: str, field_id: str):
        self._require_admin(user)
        ref = db.reference(f'crowdsource_form_fields/{project_id}/{field_id}')
        if not ref.get():
            raise NotFoundError('Field not found')
        ref.delete()

    def collect_answers(self, project_id: str, form) -> Dict:
        """
        Validate a submission's answers to the project's active fields.

        Args:
            form: submitted form (werkzeug MultiDict or plain dict)

        Returns:
            {field_name: value} for answered fields

        Raises:
            ValidationError: naming the first field that fails
        """
        answers = {}
        for field in self.list_fields(project_id):
            name = field['field_name']
            label = field.get('field_label') or name

            if field['field_type'] == 'checkbox' and field.get('options'):
                values = form.getlist(name) if hasattr(form, 'getlist') else form.get(name) or []
                if isinstance(values, str):
                    values = [values]
                values = [v for v in values if v]
                unknown = [v for v in values if v not in field['options']]
                if unknown:
                    raise ValidationError(f'{label}: invalid choice')
                if field.get('is_required') and not values:
                    raise ValidationError(f'{label} is required')
                if values:
                    answers[name] = values
                continue

            raw = form.get(name)
            if field['field_type'] == 'checkbox':
                if field.get('is_required') and not as_bool(raw):
                    raise ValidationError(f'{label} is required')
                answers[name] = as_bool(raw)
                continue

            value = sanitize_text(raw, 5000)
            if not value:
                if field.get('is_required'):
                    raise ValidationError(f'{label} is required')
                continue

            valid, error = self._check_answer(field, value)
            if not valid:
                raise ValidationError(f'{label}: {error}')
            answers[name] = _number(value, label) if field['field_type'] == 'number' else value
        return answers

    @staticmethod
    def _check_answer(field: Dict, value: str) -> Tuple[bool, Optional[str]]:
        field_type = field['field_type']

        if field_type == 'number':
            try:
                number = float(value)
            except ValueError:
                return False, 'must be a number'
            if field.get('min_value') is not None and number < field['min_value']:
                return False, f"must be at least {field['min_value']}"
            if field.get('max_value') is not None and number > field['max_value']:
                return False, f"must be at most {field['max_value']}"
            return True, None

        if field.get('min_length') and len(value) < field['min_length']:
            return False, f"must be at least {field['min_length']} characters"
        if field.get('max_length') and len(value) > field['max_length']:
            return False, f"must be at most {field['max_length']} characters"

        if field_type in ('select', 'radio') and value not in (field.get('options') or []):
            return False, 'invalid choice'
        if field_type == 'email' and not ContactValidator.validate_email(value):
            return False, 'invalid email'
        if field_type == 'phone' and not ContactValidator.validate_phone(value):
            return False, 'invalid phone number'
        if field_type == 'url':
            parsed = urlparse(value)
            if parsed.scheme not in ('http', 'https') or not parsed.netloc:
                return False, 'invalid URL'
        if field_type == 'date' and not DATE_PATTERN.match(value):
            return False, 'use YYYY-MM-DD'
        if field_type == 'time' and not TIME_PATTERN.match(value):
            return False, 'use HH:MM'
        if field.get('pattern') and not re.fullmatch(field['pattern'], value):
            return False, 'invalid format'
        return True, None

    # ----- geofence zones -----

    def list_zones(self, project_id: str, include_inactive: bool = False) -> List[Dict]:
        self._require_project(project_id)
        zones = snapshot_to_list(db.reference(f'crowdsource_zones/{project_id}').get())
        if not include_inactive:
            zones = [z for z in zones if z.get('is_active', True)]
        return sorted(zones, key=lambda z: z.get('display_order') or 0)

    @staticmethod
    def _clean_zone(data: Dict, partial: bool = False) -> Dict:
        cleaned = {}
        if 'zone_name' in data or not partial:
            cleaned['zone_name'] = sanitize_text(data.get('zone_name'), 200)
            if not cleaned['zone_name']:
                raise ValidationError('zone_name is required')
        if 'zone_level' in data or not partial:
            level = data.get('zone_level') or 'radius'
            if level not in ZONE_LEVELS:
                raise ValidationError(f"Invalid zone_level. Must be one of: {', '.join(ZONE_LEVELS)}")
            cleaned['zone_level'] = level
        if 'latitude' in data or 'longitude' in data or not partial:
            if not is_valid_coordinates(data.get('latitude'), data.get('longitude')):
                raise ValidationError('Invalid zone coordinates')
            cleaned['latitude'] = float(data['latitude'])
            cleaned['longitude'] = float(data['longitude'])
        if 'radius_km' in data or not partial:
            radius = _number(data.get('radius_km', DEFAULT_ZONE_RADIUS_KM), 'radius_km')
            if radius is None or radius <= 0:
                raise ValidationError('radius_km must be greater than 0')
            cleaned['radius_km'] = radius
        if 'admin_area_code' in data:
            cleaned['admin_area_code'] = sanitize_text(data['admin_area_code'], 50) or None
        if 'display_order' in data:
            cleaned['display_order'] = _number(data['display_order'], 'display_order')
        if 'is_active' in data:
            cleaned['is_active'] = as_bool(data['is_active'])
        return cleaned

    def create_zone(self, user: Dict, project_id: str, data: Dict) -> Dict:
        """Add a zone; the project switches to multi-zone geofencing"""
        self._require_admin(user)
        self._require_project(project_id)

        record = {'is_active': True, 'admin_area_code': None}
        record.update(self._clean_zone(data or {}))
        if record.get('display_order') is None:
            record['display_order'] = self._next_order(self.list_zones(project_id, include_inactive=True))
        record['created_at'] = now_iso()

        ref = db.reference(f'crowdsource_zones/{project_id}').push(record)
        db.reference(f'crowdsource_projects/{project_id}').update({'use_multi_zone': True, 'updated_at': now_iso()})
        logger.info(f"Zone {ref.key} added to project {project_id}")
        return {'id': ref.key, **record}

    def update_zone(self, user: Dict, project_id: str, zone_id: str, updates: Dict) -> Dict:
        self._require_admin(user)
        ref = db.reference(f'crowdsource_zones/{project_id}/{zone_id}')
        zone = ref.get()
        if not zone:
            raise NotFoundError('Zone not found')

        zone_input = dict(updates or {})
        if 'latitude' in zone_input or 'longitude' in zone_input:
            zone_input.setdefault('latitude', zone.get('latitude'))
            zone_input.setdefault('longitude', zone.get('longitude'))
        changes = self._clean_zone(zone_input, partial=True)
        if not changes:
            raise ValidationError('No fields to update')

        ref.update(changes)
        return with_id(zone_id, {**zone, **changes})

    def delete_zone(self, user: Dict, project_id: str, zone_id: str):
        """Remove a zone; without zones left the project returns to its single geofence"""
        self._require_admin(user)
        ref = db.reference(f'crowdsource_zones/{project_id}/{zone_id}')
        if not ref.get():
            raise NotFoundError('Zone not found')
        ref.delete()

        if not db.reference(f'crowdsource_zones/{project_id}').get():
            db.reference(f'crowdsource_projects/{project_id}').update({'use_multi_zone': False})

    def clear_zones(self, user: Dict, project_id: str):
        self._require_admin(user)
        self._require_project(project_id)
        db.reference().update({
            f'crowdsource_zones/{project_id}': None,
            f'crowdsource_projects/{project_id}/use_multi_zone': False,
        })
