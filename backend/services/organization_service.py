"""
Organizations: onboarding, settings, membership and responder status.

Membership is a property of the profile (profiles/{uid}/organization_id); an
organization's team is every profile pointing at it.
"""
from firebase_admin import db
from typing import Dict, List, Optional
import logging
import re
import secrets

from services.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from utils.geo import is_valid_coordinates
from utils.rbac import get_user_role, user_org_id
from utils.records import count_by, display_name, now_iso, snapshot_to_list, with_id
from utils.secure_logging import hash_user_id, redact_coordinates
from utils.validators import sanitize_text, ContactValidator

logger = logging.getLogger(__name__)

ORGANIZATION_STATUSES = ['pending', 'active', 'suspended']
MEMBER_ROLES = ['org_admin', 'org_responder']
RESPONDER_STATUSES = ['active', 'on_duty', 'off_duty', 'inactive']
ORGANIZATION_FIELDS = ['name', 'description', 'contact_email', 'phone', 'address', 'latitude', 'longitude']


def slugify(name: str) -> str:
    """
    Examples:
        >>> slugify('Relawan Tanggap Bencana!')
        'relawan-tanggap-bencana'
        >>> slugify('  PMI -- Jakarta  ')
        'pmi-jakarta'
    """
    slug = re.sub(r'[^a-z0-9]+', '-', (name or '').lower())
    return slug.strip('-')


class OrganizationService:
    """Organization records, members and responder state"""

    def __init__(self, auth_service):
        self.auth_service = auth_service

    # ----- organizations -----

    def _all_organizations(self) -> List[Dict]:
        return snapshot_to_list(db.reference('organizations').get())

    def _unique_slug(self, base: str) -> str:
        taken = {org.get('slug') for org in self._all_organizations()}
        slug = base
        suffix = 2
        while slug in taken:
            slug = f'{base}-{suffix}'
            suffix += 1
        return slug

    def _clean_fields(self, data: Dict) -> Dict:
        cleaned = {}
        for field in ORGANIZATION_FIELDS:
            if field not in data:
                continue
            value = data[field]
            if field in ('latitude', 'longitude'):
                cleaned[field] = float(value) if value is not None else None
            else:
                cleaned[field] = sanitize_text(value, 500) or None

        if cleaned.get('latitude') is not None or cleaned.get('longitude') is not None:
            if not is_valid_coordinates(cleaned.get('latitude'), cleaned.get('longitude')):
                raise ValidationError('Invalid organization coordinates')

        if cleaned.get('contact_email') and not ContactValidator.validate_email(cleaned['contact_email']):
            raise ValidationError('Invalid contact_email')
        return cleaned

    def create_organization(self, user: Dict, data: Dict) -> Dict:
        """
        Onboard a new organization for an org_admin without one.

        The organization starts 'pending' until a super admin approves it.
        """
        if get_user_role(user) not in ('org_admin', 'admin'):
            raise PermissionDeniedError('Only organization admins can create organizations')
        if user_org_id(user):
            raise ConflictError('You already belong to an organization')

        name = sanitize_text(data.get('name'), 200)
        if not name:
            raise ValidationError('Organization name is required')

        base_slug = slugify(data.get('slug') or name)
        if not base_slug:
            raise ValidationError('Organization name must contain letters or digits')

        record = self._clean_fields(data)
        timestamp = now_iso()
        record.update({
            'name': name,
            'slug': self._unique_slug(base_slug),
            'status': 'pending',
            'created_by': user['id'],
            'created_at': timestamp,
            'updated_at': timestamp,
        })

        ref = db.reference('organizations').push(record)
        db.reference(f"profiles/{user['id']}").update({
            'organization_id': ref.key,
            'updated_at': timestamp,
        })

        logger.info(f"Organization {record['slug']} created by {hash_user_id(user['id'])}")
        return {'id': ref.key, **record}

    def get_organization(self, org_id: str) -> Dict:
        org = db.reference(f'organizations/{org_id}').get()
        if not org:
            raise NotFoundError('Organization not found')
        return with_id(org_id, org)

    def get_organization_by_slug(self, slug: str) -> Dict:
        for org in self._all_organizations():
            if org.get('slug') == slug:
                return org
        raise NotFoundError('Organization not found')

    def list_organizations(self, status: Optional[str] = None) -> List[Dict]:
        orgs = self._all_organizations()
        if status:
            orgs = [o for o in orgs if o.get('status') == status]
        return sorted(orgs, key=lambda o: (o.get('name') or '').lower())

    def get_user_organization(self, user: Dict) -> Dict:
        org_id = user_org_id(user)
        if not org_id:
            raise NotFoundError('No organization')
        return self.get_organization(org_id)

    def update_organization(self, org_id: str, updates: Dict) -> Dict:
        self.get_organization(org_id)

        cleaned = self._clean_fields(updates or {})
        if 'name' in cleaned and not cleaned['name']:
            raise ValidationError('Organization name cannot be empty')
        if not cleaned:
            raise ValidationError('No valid fields to update')

        cleaned['updated_at'] = now_iso()
        db.reference(f'organizations/{org_id}').update(cleaned)
        return self.get_organization(org_id)

    def set_organization_status(self, org_id: str, status: str) -> Dict:
        if status not in ORGANIZATION_STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(ORGANIZATION_STATUSES)}")
        self.get_organization(org_id)

        db.reference(f'organizations/{org_id}').update({'status': status, 'updated_at': now_iso()})
        logger.info(f"Organization {org_id} status set to {status}")
        return self.get_organization(org_id)

    # ----- members -----

    def _org_profiles(self, org_id: str) -> List[Dict]:
        return [p for p in snapshot_to_list(db.reference('profiles').get())
                if p.get('organization_id') == org_id]

    def list_members(self, org_id: str) -> List[Dict]:
        members = []
        for profile in self._org_profiles(org_id):
            members.append({
                'id': profile['id'],
                'name': display_name(profile),
                'email': profile.get('email'),
                'role': profile.get('role'),
                'status': profile.get('status'),
                'phone': profile.get('phone'),
                'latitude': profile.get('latitude'),
                'longitude': profile.get('longitude'),
                'last_location_update': profile.get('last_location_update'),
            })
        return sorted(members, key=lambda m: m['name'].lower())

    def _member_profile(self, org_id: str, uid: str) -> Dict:
        profile = db.reference(f'profiles/{uid}').get()
        if not profile or profile.get('organization_id') != org_id:
            raise NotFoundError('Member not found')
        return with_id(uid, profile)

    def get_member(self, org_id: str, uid: str) -> Dict:
        return self._member_profile(org_id, uid)

    def add_member(self, org_id: str, email: str, name: str, phone: Optional[str] = None,
                   role: str = 'org_responder') -> Dict:
        """
        Add a user to the organization, creating the account when needed.

        New accounts receive a generated temporary password, returned once
        in the result as 'temporary_password'.
        """
        role = role or 'org_responder'
        if role not in MEMBER_ROLES:
            raise ValidationError(f"Invalid role. Must be one of: {', '.join(MEMBER_ROLES)}")

        name = sanitize_text(name, 100)
        if not email or not name:
            raise ValidationError('Email and name are required')
        if not ContactValidator.validate_email(email):
            raise ValidationError('Invalid email format')
        phone = sanitize_text(phone, 30) or None

        existing = self.auth_service.get_profile_by_email(email)
        if existing:
            if existing.get('organization_id'):
                raise ConflictError('User already belongs to an organization')
            if existing.get('role') == 'admin':
                raise PermissionDeniedError('Administrators cannot be added as organization members')
            if existing.get('role') == 'org_admin':
                raise ConflictError('User already administers an organization')

            updates = {
                'organization_id': org_id,
                'role': role,
                'name': name,
                'updated_at': now_iso(),
            }
            if phone:
                updates['phone'] = phone
            db.reference(f"profiles/{existing['id']}").update(updates)
            self.auth_service.set_user_role(existing['id'], role)
            logger.info(f"Existing user {hash_user_id(existing['id'])} joined org {org_id}")
            return self.get_member(org_id, existing['id'])

        temporary_password = f'{secrets.token_urlsafe(12)}Aa1'
        member = self.auth_service.create_member_account(
            email=email, name=name, phone=phone, role=role,
            organization_id=org_id, password=temporary_password
        )
        member['temporary_password'] = temporary_password
        return member

    def update_member(self, org_id: str, uid: str, updates: Dict) -> Dict:
        self._member_profile(org_id, uid)

        filtered = {}
        if 'name' in updates:
            filtered['name'] = sanitize_text(updates['name'], 100)
            if not filtered['name']:
                raise ValidationError('Name cannot be empty')
        if 'phone' in updates:
            filtered['phone'] = sanitize_text(updates['phone'], 30) or None
        if 'status' in updates:
            if updates['status'] not in RESPONDER_STATUSES:
                raise ValidationError(f"Invalid status. Must be one of: {', '.join(RESPONDER_STATUSES)}")
            filtered['status'] = updates['status']
        if 'role' in updates:
            if updates['role'] not in MEMBER_ROLES:
                raise ValidationError(f"Invalid role. Must be one of: {', '.join(MEMBER_ROLES)}")
            self.auth_service.set_user_role(uid, updates['role'])
            filtered['role'] = updates['role']

        if not filtered:
            raise ValidationError('No valid fields to update')

        filtered['updated_at'] = now_iso()
        db.reference(f'profiles/{uid}').update(filtered)
        return self.get_member(org_id, uid)

    def remove_member(self, org_id: str, uid: str):
        """Detach a member from the organization; org admins cannot be removed"""
        profile = self._member_profile(org_id, uid)
        if profile.get('role') == 'org_admin':
            raise PermissionDeniedError('Cannot remove an organization admin')

        db.reference(f'profiles/{uid}').update({
            'organization_id': None,
            'role': 'public',
            'updated_at': now_iso(),
        })
        self.auth_service.set_user_role(uid, 'public')
        logger.info(f"Member {hash_user_id(uid)} removed from org {org_id}")

    # ----- responder status -----

    def get_responder_status(self, uid: str) -> Dict:
        profile = db.reference(f'profiles/{uid}').get()
        if not profile:
            raise NotFoundError('Profile not found')

        assignments = [a for a in snapshot_to_list(db.reference('assignments').get())
                       if a.get('assigned_to') == uid]
        by_status = count_by(assignments, 'status')

        return {
            'id': uid,
            'name': display_name(profile),
            'status': profile.get('status') or 'active',
            'latitude': profile.get('latitude'),
            'longitude': profile.get('longitude'),
            'last_location_update': profile.get('last_location_update'),
            'tasks': {
                'pending': by_status.get('pending', 0),
                'active': by_status.get('accepted', 0) + by_status.get('in_progress', 0),
                'completed': by_status.get('completed', 0),
            },
        }

    def update_responder_status(self, uid: str, status: str) -> Dict:
        if status not in RESPONDER_STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(RESPONDER_STATUSES)}")
        if db.reference(f'profiles/{uid}').get() is None:
            raise NotFoundError('Profile not found')

        db.reference(f'profiles/{uid}').update({'status': status, 'updated_at': now_iso()})
        return self.get_responder_status(uid)

    def update_responder_location(self, uid: str, latitude, longitude) -> Dict:
        if not is_valid_coordinates(latitude, longitude):
            raise ValidationError('Invalid coordinates')
        if db.reference(f'profiles/{uid}').get() is None:
            raise NotFoundError('Profile not found')

        timestamp = now_iso()
        db.reference(f'profiles/{uid}').update({
            'latitude': float(latitude),
            'longitude': float(longitude),
            'last_location_update': timestamp,
        })
        lat_str, lon_str = redact_coordinates(float(latitude), float(longitude))
        logger.debug(f"Location of {hash_user_id(uid)} updated near {lat_str}, {lon_str}")
        return {'latitude': float(latitude), 'longitude': float(longitude), 'last_location_update': timestamp}

    # ----- stats -----

    def get_organization_stats(self, org_id: str) -> Dict:
        operations = [o for o in snapshot_to_list(db.reference('operations').get())
                      if o.get('organization_id') == org_id]
        operation_ids = {o['id'] for o in operations}
        assignments = [a for a in snapshot_to_list(db.reference('assignments').get())
                       if a.get('response_operation_id') in operation_ids]
        members = self._org_profiles(org_id)

        reports = snapshot_to_list(db.reference('emergency_reports').get())
        contributions = snapshot_to_list(db.reference('contributions').get())
        dispatched = [r for r in reports + contributions if r.get('dispatched_to') == org_id]

        return {
            'operations': {'total': len(operations), **count_by(operations, 'status')},
            'members': {'total': len(members), **count_by(members, 'role')},
            'assignments': {'total': len(assignments), **count_by(assignments, 'status')},
            'reports': {'total': len(dispatched), **count_by(dispatched, 'dispatch_status')},
        }

