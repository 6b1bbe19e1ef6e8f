"""
Operation teams: invitations, responses and membership.

Members live under operation_members/{op_id}/{uid}. Only accepted members
count as the operation's team for assignments and field reports.
"""
from firebase_admin import db
from typing import Dict, List, Optional
import logging

from services.errors import NotFoundError, PermissionDeniedError, ValidationError
from utils.rbac import is_admin
from utils.records import display_name, now_iso, with_id
from utils.secure_logging import hash_user_id
from utils.validators import TEAM_MEMBER_ROLES, TEAM_MEMBER_STATUSES

logger = logging.getLogger(__name__)

STATUS_ORDER = {'accepted': 0, 'invited': 1, 'declined': 2}


class TeamService:
    """Membership of users in response operations"""

    def __init__(self, operation_service, notification_service):
        self.operations = operation_service
        self.notifications = notification_service

    def list_members(self, user: Dict, op_id: str) -> List[Dict]:
        """Members joined with profile data; accepted first, then newest invitation"""
        self.operations.load_for_view(user, op_id)
        profiles = db.reference('profiles').get() or {}

        members = []
        for uid, member in self.operations.members(op_id).items():
            profile = profiles.get(uid) or {}
            members.append({
                'user_id': uid,
                **member,
                'name': display_name(profile),
                'email': profile.get('email'),
                'phone': profile.get('phone'),
                'responder_status': profile.get('status'),
                'latitude': profile.get('latitude'),
                'longitude': profile.get('longitude'),
                'inviter_name': display_name(profiles.get(member.get('invited_by')), None),
            })

        members.sort(key=lambda m: m.get('invited_at') or '', reverse=True)
        members.sort(key=lambda m: STATUS_ORDER.get(m.get('status'), 3))
        return members

    def invite_member(self, user: Dict, op_id: str, uid: str, role: Optional[str] = None) -> Dict:
        operation = self.operations.load_for_manage(user, op_id)

        if not uid:
            raise ValidationError('user_id is required')
        role = role or 'responder'
        if role not in TEAM_MEMBER_ROLES:
            raise ValidationError(f"Invalid role. Must be one of: {', '.join(TEAM_MEMBER_ROLES)}")

        profile = db.reference(f'profiles/{uid}').get()
        if not profile:
            raise NotFoundError('User not found')
        if profile.get('organization_id') != operation.get('organization_id'):
            raise ValidationError('User is not a member of this organization')

        if uid in self.operations.members(op_id):
            raise ValidationError('User is already invited to this operation')

        record = {
            'role': role,
            'status': 'invited',
            'invited_by': user['id'],
            'invited_at': now_iso(),
            'joined_at': None,
            'responded_at': None,
        }
        db.reference(f'operation_members/{op_id}/{uid}').set(record)

        self.notifications.create_notification(
            uid, 'team_invitation', 'Undangan Operasi',
            f"Anda diundang bergabung dalam operasi {operation.get('name')}",
            'response_operation', op_id
        )
        logger.info(f"User {hash_user_id(uid)} invited to operation {op_id} as {role}")
        return {'user_id': uid, **record}

    def _notify_response(self, operation: Dict, status: str):
        creator = operation.get('created_by')
        if not creator or status not in ('accepted', 'declined'):
            return
        accepted = status == 'accepted'
        self.notifications.create_notification(
            creator,
            'invitation_accepted' if accepted else 'invitation_declined',
            'Undangan Diterima' if accepted else 'Undangan Ditolak',
            f"Anggota tim telah {'menerima' if accepted else 'menolak'} undangan untuk {operation.get('name')}",
            'response_operation', operation['id']
        )

    def update_member(self, user: Dict, op_id: str, uid: str,
                      status: Optional[str] = None, role: Optional[str] = None) -> Dict:
        """
        Change a membership.

        Members updating themselves may only accept or decline; operation
        managers may set any status and change the role.
        """
        operation = self.operations.load(op_id)
        is_self = user['id'] == uid
        is_manager = self.operations.can_manage(user, operation)

        if not is_self and not is_manager:
            raise PermissionDeniedError('Forbidden')

        ref = db.reference(f'operation_members/{op_id}/{uid}')
        member = ref.get()
        if not member:
            raise NotFoundError('Membership not found')

        updates = {}
        if status:
            allowed = TEAM_MEMBER_STATUSES if is_manager else ['accepted', 'declined']
            if status not in allowed:
                raise ValidationError('Invalid status')
            updates['status'] = status
            updates['responded_at'] = now_iso()
            if status == 'accepted':
                updates['joined_at'] = updates['responded_at']

        if role and is_manager:
            if role not in TEAM_MEMBER_ROLES:
                raise ValidationError(f"Invalid role. Must be one of: {', '.join(TEAM_MEMBER_ROLES)}")
            updates['role'] = role

        if not updates:
            raise ValidationError('No fields to update')

        ref.update(updates)
        if is_self and status:
            self._notify_response(operation, status)

        return {'user_id': uid, **member, **updates}

    def respond_to_invitation(self, user: Dict, op_id: str, accept: bool) -> Dict:
        operation = self.operations.load(op_id)
        ref = db.reference(f"operation_members/{op_id}/{user['id']}")
        member = ref.get()
        if not member:
            raise NotFoundError('Invitation not found')
        if member.get('status') != 'invited':
            raise ValidationError('Already responded to this invitation')

        timestamp = now_iso()
        updates = {'status': 'accepted' if accept else 'declined', 'responded_at': timestamp}
        if accept:
            updates['joined_at'] = timestamp
        ref.update(updates)

        self._notify_response(operation, updates['status'])
        logger.info(f"User {hash_user_id(user['id'])} {updates['status']} operation {op_id}")
        return {'user_id': user['id'], **member, **updates}

    def remove_member(self, user: Dict, op_id: str, uid: str):
        operation = self.operations.load(op_id)
        if user['id'] != uid and not self.operations.can_manage(user, operation):
            raise PermissionDeniedError('Forbidden')

        ref = db.reference(f'operation_members/{op_id}/{uid}')
        if ref.get() is None:
            raise NotFoundError('Membership not found')
        ref.delete()

    def list_my_operations(self, user: Dict) -> List[Dict]:
        """The user's memberships in operations that are still running"""
        operations = db.reference('operations').get() or {}
        memberships = db.reference('operation_members').get() or {}
        organizations = db.reference('organizations').get() or {}

        results = []
        for op_id, members in memberships.items():
            member = (members or {}).get(user['id'])
            operation = operations.get(op_id)
            if not member or not operation or operation.get('status') == 'completed':
                continue
            org = organizations.get(operation.get('organization_id')) or {}
            results.append({
                'operation_id': op_id,
                **member,
                'operation': {
                    **with_id(op_id, operation),
                    'organization_name': org.get('name'),
                    'team_count': sum(1 for m in members.values() if m.get('status') == 'accepted'),
                },
            })

        return sorted(results, key=lambda r: r.get('invited_at') or '', reverse=True)
