"""
Citizen submissions: emergency reports (people needing help) and
contributions (people offering shelter or goods).

Both are public, validated and sanitized here, reverse-geocoded when the
citizen left the address empty, and dispatched automatically to the nearest
covering operation.
"""
from firebase_admin import db
from typing import Dict, List, Optional, Tuple
import logging

from services.errors import NotFoundError, PermissionDeniedError, ValidationError
from utils.rbac import get_user_role, is_admin, user_org_id
from utils.records import as_bool, now_iso, snapshot_to_list, sort_newest, with_id
from utils.secure_logging import redact_pii, safe_log_dict
from utils.validators import (
    CONTRIBUTION_STATUSES, DISPATCH_STATUSES, REPORT_STATUSES,
    ReportValidator, sanitize_text
)

logger = logging.getLogger(__name__)

ORG_LIST_LIMIT = 100


class ReportService:
    """Public report intake and organization-side triage"""

    def __init__(self, dispatch_service, geocoding_service=None):
        self.dispatch = dispatch_service
        self.geocoding = geocoding_service

    # ----- intake -----

    def _resolve_address(self, data: Dict) -> Optional[str]:
        address = sanitize_text(data.get('address'), 500)
        if address:
            return address
        if self.geocoding:
            return self.geocoding.address_for(data['latitude'], data['longitude'])
        return None

    @staticmethod
    def _dispatch_fields() -> Dict:
        return {
            'dispatch_status': 'unassigned',
            'dispatched_to': None,
            'dispatched_operation_id': None,
            'dispatched_at': None,
        }

    def _common_fields(self, data: Dict) -> Dict:
        return {
            'full_name': sanitize_text(data['full_name'], 100),
            'phone_number': sanitize_text(data['phone_number'], 30),
            'email': sanitize_text(data.get('email'), 254) or None,
            'address': self._resolve_address(data),
            'description': sanitize_text(data['description'], 2000),
            'latitude': float(data['latitude']),
            'longitude': float(data['longitude']),
            'photo_url': data.get('photo_url') or None,
            'created_at': now_iso(),
        }

    def submit_emergency_report(self, data: Dict, client_ip: Optional[str] = None) -> Tuple[Dict, Dict]:
        """
        Store a citizen emergency report and dispatch it.

        Returns:
            (report, dispatch result dict)
        """
        valid, error = ReportValidator.validate_emergency_report(data or {})
        if not valid:
            raise ValidationError(error)

        record = self._common_fields(data)
        record.update({
            'assistance_type': data['assistance_type'],
            'status': 'needs_verification',
            **self._dispatch_fields(),
        })

        ref = db.reference('emergency_reports').push(record)
        logger.info(redact_pii(f"Emergency report {ref.key} ({record['assistance_type']}) from {client_ip}"))

        result = self.dispatch.process_new_report_dispatch(
            ref.key, record['latitude'], record['longitude'], 'emergency_report')
        return self.get_report(ref.key), result.to_dict()

    def submit_contribution(self, data: Dict, client_ip: Optional[str] = None) -> Tuple[Dict, Dict]:
        valid, error = ReportValidator.validate_contribution(data or {})
        if not valid:
            raise ValidationError(error)

        record = self._common_fields(data)
        contribution_type = data['contribution_type']
        record.update({
            'contribution_type': contribution_type,
            'show_contact_info': as_bool(data.get('show_contact_info', False)),
            'consent_statement': sanitize_text(data.get('consent_statement'), 500),
            'status': 'pending',
            **self._dispatch_fields(),
        })
        if contribution_type == 'shelter':
            record['capacity'] = int(data['capacity'])
            record['facilities'] = [sanitize_text(f, 100) for f in data.get('facilities') or []]
        else:
            record['quantity'] = float(data['quantity'])
            record['unit'] = sanitize_text(data['unit'], 30)

        ref = db.reference('contributions').push(record)
        logger.info(redact_pii(f"Contribution {ref.key} ({contribution_type}) from {client_ip}"))
        logger.debug(f"Contribution payload: {safe_log_dict(record)}")

        result = self.dispatch.process_new_report_dispatch(
            ref.key, record['latitude'], record['longitude'], 'contribution')
        return self.get_contribution(ref.key), result.to_dict()

    # ----- lookups -----

    @staticmethod
    def get_report(report_id: str) -> Dict:
        report = db.reference(f'emergency_reports/{report_id}').get()
        if not report:
            raise NotFoundError('Report not found')
        return with_id(report_id, report)

    @staticmethod
    def get_contribution(contribution_id: str) -> Dict:
        contribution = db.reference(f'contributions/{contribution_id}').get()
        if not contribution:
            raise NotFoundError('Contribution not found')
        return with_id(contribution_id, contribution)

    # ----- organization side -----

    @staticmethod
    def _ensure_org_staff(user: Dict):
        if get_user_role(user) not in ('org_admin', 'admin'):
            raise PermissionDeniedError('Forbidden')

    @staticmethod
    def _visible_to(user: Dict, record: Dict) -> bool:
        if is_admin(user):
            return True
        dispatched_to = record.get('dispatched_to')
        return not dispatched_to or dispatched_to == user_org_id(user)

    def _list_for_org(self, user: Dict, path: str, filters: Dict) -> List[Dict]:
        self._ensure_org_staff(user)
        records = [r for r in snapshot_to_list(db.reference(path).get()) if self._visible_to(user, r)]
        for field, value in filters.items():
            if value:
                records = [r for r in records if r.get(field) == value]
        return sort_newest(records)[:ORG_LIST_LIMIT]

    def list_reports_for_org(self, user: Dict, dispatch_status: Optional[str] = None,
                             status: Optional[str] = None) -> List[Dict]:
        """Reports dispatched to the user's organization or not dispatched yet (admins see all)"""
        return self._list_for_org(user, 'emergency_reports',
                                  {'dispatch_status': dispatch_status, 'status': status})

    def list_contributions_for_org(self, user: Dict, status: Optional[str] = None,
                                   contribution_type: Optional[str] = None) -> List[Dict]:
        return self._list_for_org(user, 'contributions',
                                  {'status': status, 'contribution_type': contribution_type})

    def update_emergency_report(self, user: Dict, report_id: str, status: Optional[str] = None,
                                dispatch_status: Optional[str] = None) -> Dict:
        self._ensure_org_staff(user)
        if not report_id:
            raise ValidationError('Report ID required')

        updates = {}
        if status:
            if status not in REPORT_STATUSES:
                raise ValidationError(f"Invalid status. Must be one of: {', '.join(REPORT_STATUSES)}")
            updates['status'] = status
        if dispatch_status:
            if dispatch_status not in DISPATCH_STATUSES:
                raise ValidationError(f"Invalid dispatch_status. Must be one of: {', '.join(DISPATCH_STATUSES)}")
            updates['dispatch_status'] = dispatch_status
        if not updates:
            raise ValidationError('No updates provided')

        report = self.get_report(report_id)
        if not self._visible_to(user, report):
            raise PermissionDeniedError('Report belongs to another organization')

        updates['status_updated_by'] = user['id']
        updates['status_updated_at'] = now_iso()
        db.reference(f'emergency_reports/{report_id}').update(updates)
        return {**report, **updates}

    def update_contribution_status(self, user: Dict, contribution_id: str, status: Optional[str]) -> Dict:
        self._ensure_org_staff(user)
        if not contribution_id:
            raise ValidationError('Contribution ID required')
        if status not in CONTRIBUTION_STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(CONTRIBUTION_STATUSES)}")

        contribution = self.get_contribution(contribution_id)
        if not self._visible_to(user, contribution):
            raise PermissionDeniedError('Contribution belongs to another organization')

        updates = {
            'status': status,
            'status_updated_by': user['id'],
            'status_updated_at': now_iso(),
        }
        db.reference(f'contributions/{contribution_id}').update(updates)
        return {**contribution, **updates}
