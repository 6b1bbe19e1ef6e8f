"""
Report assignments: an operation manager hands a citizen report to an
accepted team member, who then works it to completion.

Lifecycle:
    pending -> accepted | declined
    accepted -> in_progress | declined
    in_progress -> completed
"""
from firebase_admin import db
from typing import Dict, List, Optional
import logging

from services.errors import NotFoundError, PermissionDeniedError, ValidationError
from utils.records import display_name, now_iso, snapshot_to_list, sort_newest, with_id
from utils.secure_logging import hash_user_id
from utils.validators import ASSIGNMENT_PRIORITIES, OperationValidator, sanitize_text

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    'pending': ['accepted', 'declined'],
    'accepted': ['in_progress', 'declined'],
    'in_progress': ['completed'],
    'completed': [],
    'declined': [],
}

STATUS_TIMESTAMPS = {
    'accepted': 'accepted_at',
    'in_progress': 'started_at',
    'completed': 'completed_at',
}

REPORT_PATHS = {
    'emergency_report': 'emergency_reports',
    'contribution': 'contributions',
}

STATUS_VERBS = {
    'accepted': 'menerima',
    'declined': 'menolak',
    'in_progress': 'memulai',
    'completed': 'menyelesaikan',
}


class AssignmentService:
    """Assign reports to responders and track progress"""

    def __init__(self, operation_service, notification_service):
        self.operations = operation_service
        self.notifications = notification_service

    # ----- helpers -----

    @staticmethod
    def _load(assignment_id: str) -> Dict:
        assignment = db.reference(f'assignments/{assignment_id}').get()
        if not assignment:
            raise NotFoundError('Assignment not found')
        return with_id(assignment_id, assignment)

    @staticmethod
    def _find_report(report_id: str, report_type: Optional[str] = None):
        """Locate a report by id; returns (report_type, record) or raises NotFoundError"""
        candidates = [report_type] if report_type else list(REPORT_PATHS)
        for candidate in candidates:
            record = db.reference(f'{REPORT_PATHS[candidate]}/{report_id}').get()
            if record:
                return candidate, record
        raise NotFoundError('Report not found')

    @staticmethod
    def _report_summary(assignment: Dict) -> Optional[Dict]:
        path = REPORT_PATHS.get(assignment.get('report_type'), 'emergency_reports')
        report = db.reference(f"{path}/{assignment.get('report_id')}").get()
        if not report:
            return None
        return {
            'id': assignment.get('report_id'),
            'full_name': report.get('full_name'),
            'phone_number': report.get('phone_number'),
            'description': report.get('description'),
            'category': report.get('assistance_type') or report.get('contribution_type'),
            'address': report.get('address'),
            'latitude': report.get('latitude'),
            'longitude': report.get('longitude'),
            'photo_url': report.get('photo_url'),
            'status': report.get('status'),
            'dispatch_status': report.get('dispatch_status'),
        }

    def _enrich(self, assignment: Dict, profiles: Dict, operations: Optional[Dict] = None) -> Dict:
        enriched = {
            **assignment,
            'report': self._report_summary(assignment),
            'assignee_name': display_name(profiles.get(assignment.get('assigned_to'))),
            'assignee_phone': (profiles.get(assignment.get('assigned_to')) or {}).get('phone'),
            'assigner_name': display_name(profiles.get(assignment.get('assigned_by'))),
        }
        if operations is not None:
            operation = operations.get(assignment.get('response_operation_id')) or {}
            enriched['operation'] = {
                'id': assignment.get('response_operation_id'),
                'name': operation.get('name'),
                'disaster_type': operation.get('disaster_type'),
                'posko_name': operation.get('posko_name'),
                'posko_address': operation.get('posko_address'),
                'posko_lat': operation.get('posko_lat'),
                'posko_lng': operation.get('posko_lng'),
            }
        return enriched

    @staticmethod
    def _mark_report(report_type: str, report_id: str, assigned: bool):
        path = f'{REPORT_PATHS[report_type]}/{report_id}'
        if report_type == 'emergency_report':
            updates = {'dispatch_status': 'assigned' if assigned else 'dispatched'}
        else:
            updates = {'status': 'assigned' if assigned else 'verified'}
        db.reference(path).update(updates)

    # ----- operation side -----

    def list_operation_assignments(self, user: Dict, op_id: str, status: Optional[str] = None) -> List[Dict]:
        self.operations.load_for_view(user, op_id)
        assignments = [a for a in snapshot_to_list(db.reference('assignments').get())
                       if a.get('response_operation_id') == op_id]
        if status:
            assignments = [a for a in assignments if a.get('status') == status]

        profiles = db.reference('profiles').get() or {}
        return sort_newest((self._enrich(a, profiles) for a in assignments), 'assigned_at')

    def create_assignment(self, user: Dict, op_id: str, data: Dict) -> Dict:
        operation = self.operations.load_for_manage(user, op_id)

        valid, error = OperationValidator.validate_assignment(data)
        if not valid:
            raise ValidationError(error)

        report_id = data['report_id']
        assignee = data['assigned_to']

        if not self.operations.is_accepted_member(op_id, assignee):
            raise ValidationError('Assignee must be an accepted member of this operation')

        report_type, _ = self._find_report(report_id, data.get('report_type'))

        for existing in snapshot_to_list(db.reference('assignments').get()):
            if existing.get('report_id') == report_id and existing.get('assigned_to') == assignee:
                raise ValidationError('This report is already assigned to this responder')

        timestamp = now_iso()
        record = {
            'report_id': report_id,
            'report_type': report_type,
            'response_operation_id': op_id,
            'assigned_to': assignee,
            'assigned_by': user['id'],
            'status': 'pending',
            'priority': data.get('priority') or 'normal',
            'notes': sanitize_text(data.get('notes'), 2000) or None,
            'response_notes': None,
            'assigned_at': timestamp,
            'accepted_at': None,
            'started_at': None,
            'completed_at': None,
            'updated_at': timestamp,
        }
        ref = db.reference('assignments').push(record)
        self._mark_report(report_type, report_id, assigned=True)

        self.notifications.create_notification(
            assignee, 'new_assignment', 'Tugas Baru',
            f"Anda mendapat tugas baru dalam operasi {operation.get('name')}",
            'report_assignment', ref.key
        )
        logger.info(f"Report {report_id} assigned to {hash_user_id(assignee)} in operation {op_id}")
        return {'id': ref.key, **record}

    def get_assignment(self, user: Dict, assignment_id: str) -> Dict:
        assignment = self._load(assignment_id)
        if assignment.get('assigned_to') != user['id']:
            operation = self.operations.load(assignment['response_operation_id'])
            if not self.operations.can_manage(user, operation):
                raise PermissionDeniedError('Forbidden')

        profiles = db.reference('profiles').get() or {}
        return self._enrich(assignment, profiles, db.reference('operations').get() or {})

    def update_assignment(self, user: Dict, assignment_id: str, updates: Dict) -> Dict:
        """Manager edits: priority, notes, reassignment and status overrides"""
        assignment = self._load(assignment_id)
        operation = self.operations.load(assignment['response_operation_id'])
        if not self.operations.can_manage(user, operation):
            raise PermissionDeniedError('Forbidden')

        changes = {}
        if 'priority' in updates:
            if updates['priority'] not in ASSIGNMENT_PRIORITIES:
                raise ValidationError(f"Invalid priority. Must be one of: {', '.join(ASSIGNMENT_PRIORITIES)}")
            changes['priority'] = updates['priority']
        if 'notes' in updates:
            changes['notes'] = sanitize_text(updates['notes'], 2000) or None
        if updates.get('assigned_to') and updates['assigned_to'] != assignment.get('assigned_to'):
            new_assignee = updates['assigned_to']
            if not self.operations.is_accepted_member(operation['id'], new_assignee):
                raise ValidationError('Assignee must be an accepted member of this operation')
            changes.update({
                'assigned_to': new_assignee,
                'status': 'pending',
                'accepted_at': None,
                'started_at': None,
            })
        if 'status' in updates and 'assigned_to' not in changes:
            status = updates['status']
            if status not in ALLOWED_TRANSITIONS:
                raise ValidationError('Invalid status')
            changes['status'] = status
            if status in STATUS_TIMESTAMPS:
                changes[STATUS_TIMESTAMPS[status]] = now_iso()

        if not changes:
            raise ValidationError('No fields to update')

        changes['updated_at'] = now_iso()
        db.reference(f'assignments/{assignment_id}').update(changes)

        if 'assigned_to' in changes:
            self.notifications.create_notification(
                changes['assigned_to'], 'new_assignment', 'Tugas Baru',
                f"Anda mendapat tugas baru dalam operasi {operation.get('name')}",
                'report_assignment', assignment_id
            )
        if changes.get('status') == 'completed':
            self._resolve_report(assignment)

        return {**assignment, **changes}

    def delete_assignment(self, user: Dict, assignment_id: str):
        """
        Remove an assignment. A report still marked assigned goes back to
        dispatched (verified for contributions) when no other assignment
        references it. Resolved reports keep their resolution.
        """
        assignment = self._load(assignment_id)
        operation = self.operations.load(assignment['response_operation_id'])
        if not self.operations.can_manage(user, operation):
            raise PermissionDeniedError('Forbidden')

        db.reference(f'assignments/{assignment_id}').delete()

        remaining = [a for a in snapshot_to_list(db.reference('assignments').get())
                     if a.get('report_id') == assignment.get('report_id')]
        report_type = assignment.get('report_type') or 'emergency_report'
        if not remaining and report_type in REPORT_PATHS:
            path = f"{REPORT_PATHS[report_type]}/{assignment.get('report_id')}"
            report = db.reference(path).get() or {}
            state_field = 'dispatch_status' if report_type == 'emergency_report' else 'status'
            if report.get(state_field) == 'assigned':
                self._mark_report(report_type, assignment['report_id'], assigned=False)

    # ----- responder side -----

    def list_my_assignments(self, user: Dict, operation_id: Optional[str] = None,
                            status: Optional[str] = None) -> List[Dict]:
        assignments = [a for a in snapshot_to_list(db.reference('assignments').get())
                       if a.get('assigned_to') == user['id']]
        if operation_id:
            assignments = [a for a in assignments if a.get('response_operation_id') == operation_id]
        if status:
            assignments = [a for a in assignments if a.get('status') == status]

        profiles = db.reference('profiles').get() or {}
        operations = db.reference('operations').get() or {}
        return sort_newest((self._enrich(a, profiles, operations) for a in assignments), 'assigned_at')

    def get_my_assignment(self, user: Dict, assignment_id: str) -> Dict:
        assignment = self._load(assignment_id)
        if assignment.get('assigned_to') != user['id']:
            raise NotFoundError('Assignment not found')

        profiles = db.reference('profiles').get() or {}
        return self._enrich(assignment, profiles, db.reference('operations').get() or {})

    def update_my_assignment(self, user: Dict, assignment_id: str,
                             status: Optional[str] = None, response_notes: Optional[str] = None) -> Dict:
        assignment = self._load(assignment_id)
        if assignment.get('assigned_to') != user['id']:
            raise NotFoundError('Assignment not found')

        changes = {}
        if status:
            current = assignment.get('status') or 'pending'
            if status not in ALLOWED_TRANSITIONS.get(current, []):
                raise ValidationError(f"Cannot change assignment from {current} to {status}")
            changes['status'] = status
            if status in STATUS_TIMESTAMPS:
                changes[STATUS_TIMESTAMPS[status]] = now_iso()

        if response_notes is not None:
            changes['response_notes'] = sanitize_text(response_notes, 2000) or None

        if not changes:
            raise ValidationError('No fields to update')

        changes['updated_at'] = now_iso()
        db.reference(f'assignments/{assignment_id}').update(changes)

        if status == 'completed':
            self._resolve_report(assignment)
        if status:
            self.notifications.create_notification(
                assignment.get('assigned_by'), f'assignment_{status}', 'Status Tugas Diperbarui',
                f"Responder telah {STATUS_VERBS.get(status, 'mengupdate')} tugas",
                'report_assignment', assignment_id
            )

        logger.info(f"Assignment {assignment_id} updated by {hash_user_id(user['id'])}")
        return {**assignment, **changes}

    @staticmethod
    def _resolve_report(assignment: Dict):
        report_type = assignment.get('report_type') or 'emergency_report'
        report_id = assignment.get('report_id')
        if report_type != 'emergency_report':
            return
        path = f'emergency_reports/{report_id}'
        if db.reference(path).get():
            db.reference(path).update({
                'dispatch_status': 'resolved',
                'status': 'resolved',
                'status_updated_at': now_iso(),
            })

