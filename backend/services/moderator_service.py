"""
Crowdsourcing moderators: super admins invite people by e-mail to help
review one project's submissions.

An invitation carries a one-time token valid for 7 days. The invited user
accepts it while signed in with the invited e-mail address and becomes an
active moderator with the invitation's permissions.
"""
import secrets
from datetime import datetime, timedelta, timezone
from firebase_admin import db
from typing import Dict, List, Optional
import logging

from services.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from utils.rbac import is_admin
from utils.records import as_bool, now_iso, parse_iso, snapshot_to_list, sort_newest, with_id
from utils.secure_logging import hash_user_id, redact_pii
from utils.validators import ContactValidator

logger = logging.getLogger(__name__)

INVITE_TTL_DAYS = 7
MODERATOR_STATUSES = ['active', 'revoked']

# Permission flags and their defaults for a new invitation
PERMISSION_DEFAULTS = {
    'can_approve': True,
    'can_reject': True,
    'can_flag': True,
    'can_export': False,
}


class ModeratorService:
    """Project moderator invitations and permissions"""

    @staticmethod
    def _require_admin(user: Optional[Dict]):
        if not is_admin(user):
            raise PermissionDeniedError('Forbidden')

    @staticmethod
    def _project(project_id: str) -> Dict:
        project = db.reference(f'crowdsource_projects/{project_id}').get()
        if not project:
            raise NotFoundError('Project not found')
        return with_id(project_id, project)

    @staticmethod
    def _is_open(invite: Dict) -> bool:
        if invite.get('accepted_at'):
            return False
        expires = parse_iso(invite.get('expires_at'))
        return expires is not None and expires > datetime.now(timezone.utc)

    def _open_invites(self, project_id: str) -> List[Dict]:
        invites = snapshot_to_list(db.reference('crowdsource_moderator_invites').get())
        return [{**i, 'token': i['id']} for i in invites if i.get('project_id') == project_id and self._is_open(i)]

    def list_moderators(self, user: Dict, project_id: str) -> Dict:
        """Moderators (any status) and pending invitations for a project"""
        self._require_admin(user)
        self._project(project_id)

        profiles = db.reference('profiles').get() or {}
        moderators = []
        for moderator in snapshot_to_list(db.reference(f'crowdsource_moderators/{project_id}').get()):
            profile = profiles.get(moderator['id']) or {}
            moderators.append({**moderator, 'user_name': profile.get('name')})

        return {
            'moderators': sort_newest(moderators, 'accepted_at'),
            'invites': sort_newest(self._open_invites(project_id), 'invited_at'),
        }

    def invite(self, user: Dict, project_id: str, email: str, permissions: Optional[Dict] = None) -> Dict:
        self._require_admin(user)
        self._project(project_id)

        email = (email or '').strip().lower()
        if not ContactValidator.validate_email(email):
            raise ValidationError('Valid email required')

        if any((i.get('email') or '').lower() == email for i in self._open_invites(project_id)):
            raise ConflictError('Email sudah diundang')

        moderators = db.reference(f'crowdsource_moderators/{project_id}').get() or {}
        if any((m.get('email') or '').lower() == email and m.get('status') == 'active'
               for m in moderators.values()):
            raise ConflictError('Email sudah menjadi moderator')

        permissions = permissions or {}
        token = secrets.token_hex(32)
        invited_at = datetime.now(timezone.utc)
        record = {
            'project_id': project_id,
            'email': email,
            **{flag: as_bool(permissions.get(flag, default)) for flag, default in PERMISSION_DEFAULTS.items()},
            'invited_by': user['id'],
            'invited_at': invited_at.isoformat(),
            'expires_at': (invited_at + timedelta(days=INVITE_TTL_DAYS)).isoformat(),
        }
        db.reference(f'crowdsource_moderator_invites/{token}').set(record)
        logger.info(redact_pii(f"Moderator invite for {email} on project {project_id}"))

        return {
            'invite': {'token': token, **record},
            'invite_link': f'/crowdsourcing/invite/{token}',
            'message': f'Undangan dikirim ke {email}',
        }

    def accept_invite(self, user: Dict, token: str) -> Dict:
        ref = db.reference(f'crowdsource_moderator_invites/{token}')
        invite = ref.get()
        if not invite or not self._is_open(invite):
            raise NotFoundError('Invalid or expired invitation')

        user_email = (user.get('email') or '').lower()
        if user_email != (invite.get('email') or '').lower():
            raise PermissionDeniedError(f"Undangan ini untuk {invite['email']}. Login dengan email tersebut.")

        project_id = invite['project_id']
        accepted_at = now_iso()
        db.reference(f"crowdsource_moderators/{project_id}/{user['id']}").set({
            'email': user_email,
            **{flag: bool(invite.get(flag)) for flag in PERMISSION_DEFAULTS},
            'status': 'active',
            'invited_by': invite.get('invited_by'),
            'accepted_at': accepted_at,
        })
        ref.update({'accepted_at': accepted_at, 'accepted_by': user['id']})

        project = db.reference(f'crowdsource_projects/{project_id}').get() or {}
        logger.info(f"User {hash_user_id(user['id'])} now moderates project {project_id}")
        return {
            'project_id': project_id,
            'project_title': project.get('title'),
            'message': 'Anda sekarang menjadi moderator untuk project ini',
        }

    def update_moderator(self, user: Dict, project_id: str, uid: str, updates: Dict) -> Dict:
        self._require_admin(user)
        ref = db.reference(f'crowdsource_moderators/{project_id}/{uid}')
        moderator = ref.get()
        if not moderator:
            raise NotFoundError('Moderator not found')

        changes = {flag: as_bool(updates[flag]) for flag in PERMISSION_DEFAULTS if flag in updates}
        if 'status' in updates:
            if updates['status'] not in MODERATOR_STATUSES:
                raise ValidationError(f"Invalid status. Must be one of: {', '.join(MODERATOR_STATUSES)}")
            changes['status'] = updates['status']
        if not changes:
            raise ValidationError('No fields to update')

        ref.update(changes)
        return with_id(uid, {**moderator, **changes})

    def revoke(self, user: Dict, project_id: str, uid: str):
        self.update_moderator(user, project_id, uid, {'status': 'revoked'})
        logger.info(f"Moderator {hash_user_id(uid)} revoked from project {project_id}")

    def permissions_for(self, user: Optional[Dict], project_id: str) -> Optional[Dict]:
        """Active moderator record for the user on a project, or None"""
        if not user:
            return None
        moderator = db.reference(f"crowdsource_moderators/{project_id}/{user['id']}").get()
        if not moderator or moderator.get('status') != 'active':
            return None
        return moderator

    def can(self, user: Optional[Dict], project_id: str, permission: str) -> bool:
        """Admins can do everything; moderators need the matching flag"""
        if is_admin(user):
            return True
        moderator = self.permissions_for(user, project_id)
        return bool(moderator and moderator.get(permission))

    def my_projects(self, user: Dict) -> List[Dict]:
        """Projects the user actively moderates, with pending submission counts"""
        projects = db.reference('crowdsource_projects').get() or {}
        result = []
        for project_id, moderators in (db.reference('crowdsource_moderators').get() or {}).items():
            moderator = (moderators or {}).get(user['id'])
            if not moderator or moderator.get('status') != 'active' or project_id not in projects:
                continue

            submissions = (db.reference(f'crowdsource_submissions/{project_id}').get() or {}).values()
            result.append({
                **with_id(project_id, projects[project_id]),
                **{flag: bool(moderator.get(flag)) for flag in PERMISSION_DEFAULTS},
                'pending_count': sum(1 for s in submissions if s.get('status') == 'pending'),
            })
        return sort_newest(result)
