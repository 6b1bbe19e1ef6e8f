"""
Field reports filed by team members during an operation: aid deliveries,
field conditions and incidents.
"""
from firebase_admin import db
from typing import Dict, List, Optional
import logging

from services.errors import PermissionDeniedError, ValidationError
from utils.rbac import is_admin
from utils.records import display_name, now_iso, snapshot_to_list, sort_newest
from utils.secure_logging import hash_user_id
from utils.validators import FIELD_REPORT_CATEGORIES, OperationValidator, sanitize_text

logger = logging.getLogger(__name__)

CATEGORY_LABELS = {
    'aid_delivery': 'Dropping Bantuan',
    'field_condition': 'Kondisi Lapangan',
    'incident': 'Insiden',
}


class FieldReportService:
    """Create and list field reports for an operation"""

    def __init__(self, operation_service, notification_service):
        self.operations = operation_service
        self.notifications = notification_service

    def list_field_reports(self, user: Dict, op_id: str, category: Optional[str] = None) -> List[Dict]:
        self.operations.load_for_view(user, op_id)

        reports = snapshot_to_list(db.reference(f'field_reports/{op_id}').get())
        if category:
            reports = [r for r in reports if r.get('category') == category]

        profiles = db.reference('profiles').get() or {}
        for report in reports:
            report['response_operation_id'] = op_id
            report['reporter_name'] = display_name(profiles.get(report.get('reported_by')))
        return sort_newest(reports)

    def create_field_report(self, user: Dict, op_id: str, data: Dict) -> Dict:
        operation = self.operations.load(op_id)
        if not is_admin(user) and not self.operations.is_accepted_member(op_id, user['id']):
            raise PermissionDeniedError('Only accepted team members can file field reports')

        valid, error = OperationValidator.validate_field_report(data, operation.get('disaster_type'))
        if not valid:
            raise ValidationError(error)

        title = sanitize_text(data.get('title'), 200)
        if not title:
            raise ValidationError('category and title are required')

        timestamp = now_iso()
        record = {
            'reported_by': user['id'],
            'category': data['category'],
            'subcategory': data.get('subcategory') or None,
            'title': title,
            'description': sanitize_text(data.get('description'), 2000) or None,
            'location_name': sanitize_text(data.get('location_name'), 200) or None,
            'latitude': float(data['latitude']) if data.get('latitude') is not None else None,
            'longitude': float(data['longitude']) if data.get('longitude') is not None else None,
            'severity': data.get('severity'),
            'urgency': data.get('urgency'),
            'affected_count': int(data['affected_count']) if data.get('affected_count') is not None else None,
            'quantity_delivered': sanitize_text(data.get('quantity_delivered'), 200) or None,
            'photos': list(data.get('photos') or []),
            'created_at': timestamp,
            'updated_at': timestamp,
        }
        ref = db.reference(f'field_reports/{op_id}').push(record)

        admins = [p['id'] for p in snapshot_to_list(db.reference('profiles').get())
                  if p.get('organization_id') == operation.get('organization_id')
                  and p.get('role') == 'org_admin' and p['id'] != user['id']]
        self.notifications.notify_many(
            admins, 'new_field_report',
            f"Laporan Lapangan: {CATEGORY_LABELS[record['category']]}",
            f"{title} ({operation.get('name')})",
            'field_report', ref.key
        )

        logger.info(f"Field report {ref.key} ({record['category']}) filed by {hash_user_id(user['id'])}")
        return {'id': ref.key, 'response_operation_id': op_id, **record}

    @staticmethod
    def get_field_report_options(disaster_type: Optional[str] = None) -> Dict[str, List[str]]:
        """Category -> allowed subcategories, narrowed by disaster type when given"""
        return {
            category: OperationValidator.subcategories_for(category, disaster_type)
            for category in FIELD_REPORT_CATEGORIES
        }
