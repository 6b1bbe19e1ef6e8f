"""
Incident exports for organizations and super admins.

Emergency reports and crowdsourcing submissions are flattened into one
incident shape and exported as CSV, GeoJSON or JSON. Personal fields are
masked unless the caller explicitly asks for raw data, and every export is
recorded under export_history/.
"""
import csv
import io
import json
from datetime import datetime, timedelta, timezone
from firebase_admin import db
from typing import Dict, List, Optional, Tuple
import logging

from services.errors import PermissionDeniedError, ValidationError
from utils.rbac import get_user_role, is_admin, user_org_id
from utils.records import now_iso, parse_iso, snapshot_to_list, sort_newest
from utils.secure_logging import anonymize_email, anonymize_name, anonymize_phone, hash_user_id

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ['csv', 'geojson', 'json']
SOURCE_TYPES = ['emergency_report', 'crowdsource_submission']
DEFAULT_LIMIT = 1000
ORG_MAX_LIMIT = 5000
ADMIN_MAX_LIMIT = 10000

ORG_CSV_HEADERS = ['id', 'source_type', 'disaster_type', 'assistance_type', 'incident_status',
                   'latitude', 'longitude', 'location_name', 'created_at']
ADMIN_CSV_HEADERS = ORG_CSV_HEADERS[:2] + ['organization_id'] + ORG_CSV_HEADERS[2:]


def _date_bound(value: Optional[str], end_of_day: bool = False) -> Optional[datetime]:
    """YYYY-MM-DD or full ISO timestamp; a bare end date covers the whole day"""
    if not value:
        return None
    parsed = parse_iso(value)
    if parsed is None:
        raise ValidationError(f'Invalid date: {value}')
    if end_of_day and len(value) == 10:
        parsed += timedelta(days=1) - timedelta(microseconds=1)
    return parsed


class ExportService:
    """Anonymized incident exports"""

    @staticmethod
    def _report_incidents(operations: Dict) -> List[Dict]:
        incidents = []
        for report in snapshot_to_list(db.reference('emergency_reports').get()):
            operation = operations.get(report.get('dispatched_operation_id')) or {}
            incidents.append({
                'id': report['id'],
                'source_type': 'emergency_report',
                'organization_id': report.get('dispatched_to'),
                'disaster_type': operation.get('disaster_type'),
                'assistance_type': report.get('assistance_type'),
                'incident_status': report.get('status'),
                'latitude': report.get('latitude'),
                'longitude': report.get('longitude'),
                'location_name': report.get('address'),
                'created_at': report.get('created_at'),
                'full_name': report.get('full_name'),
                'phone': report.get('phone_number'),
                'email': report.get('email'),
            })
        return incidents

    @staticmethod
    def _submission_incidents() -> List[Dict]:
        projects = db.reference('crowdsource_projects').get() or {}
        incidents = []
        for project_id, submissions in (db.reference('crowdsource_submissions').get() or {}).items():
            project = projects.get(project_id) or {}
            for submission in snapshot_to_list(submissions):
                incidents.append({
                    'id': submission['id'],
                    'source_type': 'crowdsource_submission',
                    'organization_id': None,
                    'project_id': project_id,
                    'disaster_type': project.get('disaster_type'),
                    'assistance_type': None,
                    'incident_status': submission.get('status'),
                    'latitude': submission.get('latitude'),
                    'longitude': submission.get('longitude'),
                    'location_name': submission.get('address'),
                    'created_at': submission.get('created_at'),
                    'full_name': submission.get('submitter_name'),
                    'phone': submission.get('submitter_whatsapp'),
                    'email': submission.get('submitter_email'),
                })
        return incidents

    @staticmethod
    def _anonymize(incident: Dict) -> Dict:
        return {
            **incident,
            'full_name': anonymize_name(incident.get('full_name')) or None,
            'phone': anonymize_phone(incident.get('phone')) or None,
            'email': anonymize_email(incident.get('email')) or None,
        }

    def export_incidents(self, user: Dict, filters: Dict, org_scoped: bool = True) -> Dict:
        """
        Collect incidents for an export.

        Args:
            filters: status, source_type, disaster_type, organization_id
                (admin exports only), start_date, end_date, anonymize, limit
            org_scoped: restrict to the caller's organization

        Returns:
            {'incidents': [...], 'anonymized': bool, 'filters': {...},
             'organization_id': org or None}
        """
        if org_scoped:
            if get_user_role(user) not in ('org_admin', 'admin'):
                raise PermissionDeniedError('Forbidden - org_admin required')
            organization_id = user_org_id(user)
            if not organization_id:
                raise PermissionDeniedError('No organization assigned')
            max_limit = ORG_MAX_LIMIT
        else:
            if not is_admin(user):
                raise PermissionDeniedError('Forbidden')
            organization_id = filters.get('organization_id') or None
            max_limit = ADMIN_MAX_LIMIT

        source_type = filters.get('source_type')
        if source_type and source_type not in SOURCE_TYPES:
            raise ValidationError(f"Invalid source_type. Must be one of: {', '.join(SOURCE_TYPES)}")
        try:
            limit = min(int(filters.get('limit') or DEFAULT_LIMIT), max_limit)
        except (TypeError, ValueError):
            raise ValidationError('limit must be a number')
        if limit < 1:
            raise ValidationError('limit must be positive')
        start = _date_bound(filters.get('start_date'))
        end = _date_bound(filters.get('end_date'), end_of_day=True)
        anonymize = str(filters.get('anonymize', 'true')).lower() != 'false'

        incidents = []
        if source_type in (None, 'emergency_report'):
            incidents += self._report_incidents(db.reference('operations').get() or {})
        if source_type in (None, 'crowdsource_submission'):
            incidents += self._submission_incidents()

        if organization_id:
            incidents = [i for i in incidents if i.get('organization_id') == organization_id]
        if filters.get('status'):
            incidents = [i for i in incidents if i.get('incident_status') == filters['status']]
        if filters.get('disaster_type'):
            incidents = [i for i in incidents if i.get('disaster_type') == filters['disaster_type']]
        if start or end:
            def in_range(incident: Dict) -> bool:
                created = parse_iso(incident.get('created_at'))
                if created is None:
                    return False
                return (start is None or created >= start) and (end is None or created <= end)
            incidents = [i for i in incidents if in_range(i)]

        incidents = sort_newest(incidents)[:limit]
        if anonymize:
            incidents = [self._anonymize(i) for i in incidents]

        applied = {key: filters.get(key) for key in
                   ('status', 'source_type', 'disaster_type', 'start_date', 'end_date')}
        applied['organization_id'] = organization_id
        return {
            'incidents': incidents,
            'anonymized': anonymize,
            'filters': applied,
            'organization_id': organization_id if org_scoped else None,
        }

    def record_export(self, user: Dict, export: Dict, export_format: str):
        db.reference('export_history').push({
            'user_id': user['id'],
            'organization_id': export.get('organization_id'),
            'export_type': 'incidents',
            'format': export_format,
            'filters': {k: v for k, v in export['filters'].items() if v},
            'record_count': len(export['incidents']),
            'anonymized': export['anonymized'],
            'created_at': now_iso(),
        })
        logger.info(f"Incident export ({export_format}, {len(export['incidents'])} rows) "
                    f"by {hash_user_id(user['id'])}")

    @staticmethod
    def to_csv(incidents: List[Dict], org_scoped: bool = True) -> str:
        headers = ORG_CSV_HEADERS if org_scoped else ADMIN_CSV_HEADERS
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(headers)
        for incident in incidents:
            writer.writerow(['' if incident.get(h) is None else incident.get(h) for h in headers])
        return buffer.getvalue()

    @staticmethod
    def to_geojson(incidents: List[Dict], anonymized: bool) -> str:
        features = []
        for incident in incidents:
            if incident.get('latitude') is None or incident.get('longitude') is None:
                continue
            features.append({
                'type': 'Feature',
                'geometry': {
                    'type': 'Point',
                    'coordinates': [float(incident['longitude']), float(incident['latitude'])],
                },
                'properties': {key: incident.get(key) for key in
                               ('id', 'source_type', 'disaster_type', 'assistance_type',
                                'incident_status', 'location_name', 'created_at')},
            })
        return json.dumps({
            'type': 'FeatureCollection',
            'features': features,
            'metadata': {'exported_at': now_iso(), 'total': len(features), 'anonymized': anonymized},
        }, indent=2)

    def render(self, user: Dict, filters: Dict, org_scoped: bool = True,
               default_format: str = 'csv') -> Tuple[object, Optional[str], Optional[str]]:
        """
        Run an export and render it.

        Returns:
            (body, mimetype, filename); body is a dict and mimetype None for JSON
        """
        export_format = filters.get('format') or default_format
        if export_format not in EXPORT_FORMATS:
            raise ValidationError(f"Invalid format. Must be one of: {', '.join(EXPORT_FORMATS)}")

        export = self.export_incidents(user, filters, org_scoped)
        self.record_export(user, export, export_format)

        prefix = 'org_incidents' if org_scoped else 'incidents_export'
        stamp = datetime.now(timezone.utc).date().isoformat()
        if export_format == 'csv':
            return self.to_csv(export['incidents'], org_scoped), 'text/csv', f'{prefix}_{stamp}.csv'
        if export_format == 'geojson':
            return (self.to_geojson(export['incidents'], export['anonymized']),
                    'application/geo+json', f'{prefix}_{stamp}.geojson')
        return {
            'exported_at': now_iso(),
            'total': len(export['incidents']),
            'anonymized': export['anonymized'],
            'filters': export['filters'],
            'data': export['incidents'],
        }, None, None
