"""
Response operations: an organization's effort around one disaster area.

An operation has a disaster center and radius (used for nearby-report search
and automatic dispatch), an optional command post (posko) and a team stored
under operation_members/{op_id}.
"""
from firebase_admin import db
from typing import Dict, List, Optional
import logging

from services.errors import NotFoundError, PermissionDeniedError, ValidationError
from utils.distance import haversine_km
from utils.geo import is_valid_coordinates
from utils.rbac import get_user_role, is_admin, user_org_id
from utils.records import display_name, now_iso, snapshot_to_list, sort_newest, with_id
from utils.secure_logging import hash_user_id
from utils.validators import OperationValidator, sanitize_text

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = [
    'name', 'description', 'disaster_location_name', 'disaster_radius_km',
    'posko_name', 'posko_address', 'posko_lat', 'posko_lng', 'status'
]
TEXT_FIELDS = ['name', 'description', 'disaster_location_name', 'posko_name', 'posko_address']
FLOAT_FIELDS = ['disaster_lat', 'disaster_lng', 'disaster_radius_km', 'posko_lat', 'posko_lng']


class OperationService:
    """CRUD and access rules for response operations"""

    def __init__(self, default_radius_km: float = 10.0):
        self.default_radius_km = default_radius_km

    # ----- lookups shared with team, assignment and field report services -----

    def load(self, op_id: str) -> Dict:
        operation = db.reference(f'operations/{op_id}').get()
        if not operation:
            raise NotFoundError('Operation not found')
        return with_id(op_id, operation)

    @staticmethod
    def members(op_id: str) -> Dict[str, Dict]:
        return db.reference(f'operation_members/{op_id}').get() or {}

    def is_accepted_member(self, op_id: str, uid: str) -> bool:
        member = self.members(op_id).get(uid)
        return bool(member) and member.get('status') == 'accepted'

    def can_view(self, user: Dict, operation: Dict) -> bool:
        if is_admin(user):
            return True
        if user_org_id(user) and user_org_id(user) == operation.get('organization_id'):
            return True
        return self.is_accepted_member(operation['id'], user['id'])

    def can_manage(self, user: Dict, operation: Dict) -> bool:
        if is_admin(user):
            return True
        return (get_user_role(user) == 'org_admin'
                and user_org_id(user) == operation.get('organization_id'))

    def load_for_view(self, user: Dict, op_id: str) -> Dict:
        operation = self.load(op_id)
        if not self.can_view(user, operation):
            raise PermissionDeniedError('Access denied to this operation')
        return operation

    def load_for_manage(self, user: Dict, op_id: str) -> Dict:
        operation = self.load(op_id)
        if not self.can_manage(user, operation):
            raise PermissionDeniedError('Only organization admins can manage this operation')
        return operation

    # ----- listing -----

    def _with_counts(self, operation: Dict, organizations: Dict, assignments: List[Dict]) -> Dict:
        op_id = operation['id']
        org = organizations.get(operation.get('organization_id')) or {}
        members = self.members(op_id)
        field_reports = db.reference(f'field_reports/{op_id}').get() or {}

        return {
            **operation,
            'organization_name': org.get('name'),
            'organization_slug': org.get('slug'),
            'team_count': sum(1 for m in members.values() if m.get('status') == 'accepted'),
            'field_reports_count': len(field_reports),
            'assignments_count': sum(1 for a in assignments if a.get('response_operation_id') == op_id),
        }

    def list_operations(self, user: Dict, status: Optional[str] = None,
                        organization_id: Optional[str] = None) -> List[Dict]:
        """
        Operations visible to the user, newest first.

        Org roles only ever see their own organization; admins may filter
        by organization_id.
        """
        operations = snapshot_to_list(db.reference('operations').get())

        if get_user_role(user) in ('org_admin', 'org_responder'):
            org_id = user_org_id(user)
            operations = [o for o in operations if org_id and o.get('organization_id') == org_id]
        elif is_admin(user):
            if organization_id:
                operations = [o for o in operations if o.get('organization_id') == organization_id]
        else:
            raise PermissionDeniedError('Access denied')

        if status:
            operations = [o for o in operations if o.get('status') == status]

        organizations = db.reference('organizations').get() or {}
        assignments = snapshot_to_list(db.reference('assignments').get())
        return sort_newest(self._with_counts(o, organizations, assignments) for o in operations)

    # ----- CRUD -----

    @staticmethod
    def _normalize(data: Dict) -> Dict:
        record = {}
        for field, value in data.items():
            if field in TEXT_FIELDS:
                record[field] = sanitize_text(value, 2000 if field == 'description' else 200) or None
            elif field in FLOAT_FIELDS:
                record[field] = float(value) if value not in (None, '') else None
            else:
                record[field] = value
        return record

    def create_operation(self, user: Dict, data: Dict) -> Dict:
        role = get_user_role(user)
        if role not in ('org_admin', 'admin'):
            raise PermissionDeniedError('Only organization admins can create operations')

        valid, error = OperationValidator.validate_operation(data)
        if not valid:
            raise ValidationError(error)

        organization_id = user_org_id(user)
        if role == 'admin' and data.get('organization_id'):
            organization_id = data['organization_id']
        if not organization_id:
            raise ValidationError('An organization is required to create an operation')
        if not db.reference(f'organizations/{organization_id}').get():
            raise NotFoundError('Organization not found')

        fields = ['name', 'disaster_type', 'description', 'disaster_location_name',
                  'disaster_lat', 'disaster_lng', 'disaster_radius_km',
                  'posko_name', 'posko_address', 'posko_lat', 'posko_lng']
        record = self._normalize({f: data.get(f) for f in fields})
        if not record['name']:
            raise ValidationError('Operation name is required')

        timestamp = now_iso()
        record.update({
            'organization_id': organization_id,
            'disaster_radius_km': record.get('disaster_radius_km') or self.default_radius_km,
            'status': 'active',
            'created_by': user['id'],
            'started_at': timestamp,
            'ended_at': None,
            'created_at': timestamp,
            'updated_at': timestamp,
        })

        ref = db.reference('operations').push(record)
        logger.info(f"Operation {ref.key} ({record['disaster_type']}) created by {hash_user_id(user['id'])}")
        return {'id': ref.key, **record}

    def get_operation(self, user: Dict, op_id: str) -> Dict:
        operation = self.load_for_view(user, op_id)

        profiles = db.reference('profiles').get() or {}
        team = []
        for uid, member in self.members(op_id).items():
            profile = profiles.get(uid) or {}
            team.append({
                'user_id': uid,
                **member,
                'name': display_name(profile),
                'phone': profile.get('phone'),
            })

        organizations = db.reference('organizations').get() or {}
        assignments = snapshot_to_list(db.reference('assignments').get())
        result = self._with_counts(operation, organizations, assignments)
        result['team_members'] = sorted(team, key=lambda m: m.get('invited_at') or '')
        result['created_by_name'] = display_name(profiles.get(operation.get('created_by')), None)
        return result

    def update_operation(self, user: Dict, op_id: str, updates: Dict) -> Dict:
        operation = self.load_for_manage(user, op_id)

        filtered = {k: v for k, v in (updates or {}).items() if k in UPDATABLE_FIELDS}
        if not filtered:
            raise ValidationError('No fields to update')

        valid, error = OperationValidator.validate_operation_update(filtered)
        if not valid:
            raise ValidationError(error)

        record = self._normalize(filtered)
        if 'name' in record and not record['name']:
            raise ValidationError('Operation name cannot be empty')

        timestamp = now_iso()
        if record.get('status') == 'completed' and operation.get('status') != 'completed':
            record['ended_at'] = timestamp
        elif record.get('status') == 'active':
            record['ended_at'] = None
        record['updated_at'] = timestamp

        db.reference(f'operations/{op_id}').update(record)
        logger.info(f"Operation {op_id} updated ({', '.join(sorted(filtered))})")
        return self.load(op_id)

    def delete_operation(self, user: Dict, op_id: str):
        """Delete an operation with its team, assignments and field reports (admin only)"""
        if not is_admin(user):
            raise PermissionDeniedError('Only super admins can delete operations')
        self.load(op_id)

        updates = {
            f'operations/{op_id}': None,
            f'operation_members/{op_id}': None,
            f'field_reports/{op_id}': None,
        }
        for assignment in snapshot_to_list(db.reference('assignments').get()):
            if assignment.get('response_operation_id') == op_id:
                updates[f"assignments/{assignment['id']}"] = None

        db.reference().update(updates)
        logger.info(f"Operation {op_id} deleted with {len(updates) - 3} assignment(s)")

    # ----- nearby reports -----

    def nearby_reports(self, user: Dict, op_id: str, lat=None, lng=None, radius_km=None) -> List[Dict]:
        """
        Emergency reports and contributions within radius of a point, closest first.

        The point and radius default to the operation's disaster center and
        radius. Each entry carries 'type', 'distance_km' and the status of
        this operation's assignment for it, if any.
        """
        operation = self.load_for_view(user, op_id)

        center_lat = float(lat) if lat not in (None, '') else operation.get('disaster_lat')
        center_lng = float(lng) if lng not in (None, '') else operation.get('disaster_lng')
        radius = float(radius_km) if radius_km not in (None, '') else (
            operation.get('disaster_radius_km') or self.default_radius_km)

        if not is_valid_coordinates(center_lat, center_lng):
            raise ValidationError('Invalid coordinates')
        if radius <= 0:
            raise ValidationError('radius must be greater than 0')

        assignment_status = {}
        for assignment in snapshot_to_list(db.reference('assignments').get()):
            if assignment.get('response_operation_id') == op_id:
                assignment_status[assignment.get('report_id')] = assignment.get('status')

        results = []
        sources = (
            ('emergency_report', 'emergency_reports', 'assistance_type'),
            ('contribution', 'contributions', 'contribution_type'),
        )
        for report_type, path, category_field in sources:
            for report in snapshot_to_list(db.reference(path).get()):
                if not is_valid_coordinates(report.get('latitude'), report.get('longitude')):
                    continue
                distance = haversine_km(center_lat, center_lng,
                                        float(report['latitude']), float(report['longitude']))
                if distance > radius:
                    continue
                results.append({
                    'id': report['id'],
                    'type': report_type,
                    'category': report.get(category_field),
                    'description': report.get('description'),
                    'full_name': report.get('full_name'),
                    'phone_number': report.get('phone_number'),
                    'address': report.get('address'),
                    'latitude': report['latitude'],
                    'longitude': report['longitude'],
                    'status': report.get('status'),
                    'dispatch_status': report.get('dispatch_status'),
                    'created_at': report.get('created_at'),
                    'distance_km': round(distance, 3),
                    'assignment_status': assignment_status.get(report['id']),
                })

        return sorted(results, key=lambda r: r['distance_km'])
