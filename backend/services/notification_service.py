"""
In-app notifications stored per user under notifications/{uid}.

Clients poll GET /api/notifications?unread=true; there is no push channel.
"""
from firebase_admin import db
from typing import Dict, Iterable, List, Optional, Tuple
import logging

from services.errors import NotFoundError
from utils.records import now_iso, snapshot_to_list, sort_newest
from utils.secure_logging import hash_user_id

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = [
    'team_invitation',
    'invitation_accepted',
    'invitation_declined',
    'new_assignment',
    'assignment_accepted',
    'assignment_declined',
    'assignment_in_progress',
    'assignment_completed',
    'new_field_report',
    'new_report_dispatched',
    'report_unassigned',
]

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


class NotificationService:
    """Create, list and acknowledge user notifications"""

    def create_notification(self, uid: str, notification_type: str, title: str,
                            message: Optional[str] = None, reference_type: Optional[str] = None,
                            reference_id: Optional[str] = None) -> Dict:
        record = {
            'type': notification_type,
            'title': title,
            'message': message,
            'reference_type': reference_type,
            'reference_id': reference_id,
            'read_at': None,
            'created_at': now_iso(),
        }
        ref = db.reference(f'notifications/{uid}').push(record)
        logger.debug(f"Notification {notification_type} queued for {hash_user_id(uid)}")
        return {'id': ref.key, **record}

    def notify_many(self, uids: Iterable[str], notification_type: str, title: str,
                    message: Optional[str] = None, reference_type: Optional[str] = None,
                    reference_id: Optional[str] = None) -> int:
        """Send the same notification to several users; duplicates are skipped"""
        sent = 0
        for uid in dict.fromkeys(u for u in uids if u):
            self.create_notification(uid, notification_type, title, message, reference_type, reference_id)
            sent += 1
        return sent

    @staticmethod
    def clamp_limit(limit) -> int:
        """
        Examples:
            >>> NotificationService.clamp_limit(None)
            50
            >>> NotificationService.clamp_limit('500')
            200
            >>> NotificationService.clamp_limit(0)
            1
        """
        try:
            value = int(limit) if limit is not None else DEFAULT_LIMIT
        except (TypeError, ValueError):
            value = DEFAULT_LIMIT
        return max(1, min(value, MAX_LIMIT))

    def list_notifications(self, uid: str, unread_only: bool = False, limit=None) -> Tuple[List[Dict], int]:
        """
        Returns:
            (notifications newest first, total unread count)
        """
        items = sort_newest(snapshot_to_list(db.reference(f'notifications/{uid}').get()))
        unread_count = sum(1 for n in items if not n.get('read_at'))

        if unread_only:
            items = [n for n in items if not n.get('read_at')]

        return items[:self.clamp_limit(limit)], unread_count

    def mark_read(self, uid: str, notification_id: str) -> Dict:
        ref = db.reference(f'notifications/{uid}/{notification_id}')
        record = ref.get()
        if not record:
            raise NotFoundError('Notification not found')

        if not record.get('read_at'):
            record['read_at'] = now_iso()
            ref.update({'read_at': record['read_at']})
        return {'id': notification_id, **record}

    def mark_all_read(self, uid: str) -> int:
        """Mark every unread notification read; returns how many changed"""
        items = snapshot_to_list(db.reference(f'notifications/{uid}').get())
        timestamp = now_iso()
        updates = {f"{n['id']}/read_at": timestamp for n in items if not n.get('read_at')}
        if updates:
            db.reference(f'notifications/{uid}').update(updates)
        return len(updates)

    def delete_notification(self, uid: str, notification_id: str):
        ref = db.reference(f'notifications/{uid}/{notification_id}')
        if ref.get() is None:
            raise NotFoundError('Notification not found')
        ref.delete()
