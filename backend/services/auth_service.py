"""
Firebase Authentication Service
Handles registration, token verification, profiles, passwords and roles
"""
from firebase_admin import auth, db
from typing import Dict, List, Optional, Tuple
import logging
import re
from bleach import clean
from services.errors import ConflictError, NotFoundError, ValidationError
from utils.rbac import ROLES
from utils.records import now_iso, snapshot_to_list
from utils.secure_logging import redact_pii, hash_user_id

logger = logging.getLogger(__name__)

SELF_REGISTRATION_ROLES = ('public', 'org_admin')


class AuthService:
    """Firebase Authentication integration for user management"""

    @staticmethod
    def validate_password(password: str) -> Tuple[bool, str]:
        """
        Validate password strength

        Args:
            password: Password to validate

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not password or len(password) < 8:
            return False, "Password must be at least 8 characters"
        if not re.search(r'[A-Z]', password):
            return False, "Password must contain at least one uppercase letter"
        if not re.search(r'[a-z]', password):
            return False, "Password must contain at least one lowercase letter"
        if not re.search(r'[0-9]', password):
            return False, "Password must contain at least one digit"
        return True, "Password is valid"

    @staticmethod
    def validate_email(email: str) -> Tuple[bool, str]:
        """
        Validate email format

        Args:
            email: Email address to validate

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not email or not re.match(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$', email):
            return False, "Invalid email format"

        if len(email) > 254:  # RFC 5321
            return False, "Email address is too long"

        return True, "Email is valid"

    @staticmethod
    def sanitize_name(name: str) -> str:
        """
        Strip HTML from a person's name (max 100 chars)
        """
        if not name:
            return ""

        return clean(name, tags=[], strip=True)[:100].strip()

    def create_user(self, email: str, password: str, name: str = None, role: str = 'public') -> Dict:
        """
        Register a new user with email/password authentication

        Args:
            email: User email address
            password: User password
            name: Optional full name
            role: 'public' or 'org_admin'

        Returns:
            Session user dict {id, email, role, profile}

        Raises:
            ValidationError: Invalid email, weak password or disallowed role
            ConflictError: Email already registered
        """
        role = role or 'public'
        if role not in SELF_REGISTRATION_ROLES:
            raise ValidationError(f"Role '{role}' cannot be self-registered")

        email_valid, email_error = self.validate_email(email)
        if not email_valid:
            raise ValidationError(email_error)

        password_valid, password_error = self.validate_password(password)
        if not password_valid:
            raise ValidationError(password_error)

        name = self.sanitize_name(name) if name else ''

        try:
            user_record = auth.create_user(
                email=email,
                password=password,
                display_name=name or None
            )
        except auth.EmailAlreadyExistsError:
            raise ConflictError('Email already in use')

        auth.set_custom_user_claims(user_record.uid, {'role': role})
        profile = self._write_profile(user_record.uid, email, name, role)

        logger.info(redact_pii(f"User registered: {email} as {role} (UID: {hash_user_id(user_record.uid)})"))

        return self._session_user(user_record.uid, email, role, profile)

    def create_member_account(self, email: str, name: str, phone: Optional[str],
                              role: str, organization_id: str, password: str) -> Dict:
        """
        Create an account on behalf of an organization admin.

        Unlike self-registration, org roles are allowed here; the caller
        generates the temporary password.
        """
        try:
            user_record = auth.create_user(email=email, password=password, display_name=name or None)
        except auth.EmailAlreadyExistsError:
            raise ConflictError('Email already in use')

        auth.set_custom_user_claims(user_record.uid, {'role': role})
        profile = self._write_profile(
            user_record.uid, email, name, role,
            organization_id=organization_id, phone=phone, status='active'
        )
        logger.info(f"Member account created (UID: {hash_user_id(user_record.uid)}) for org {organization_id}")
        return {'id': user_record.uid, **profile}

    def _write_profile(self, uid: str, email: str, name: str, role: str, **extra) -> Dict:
        timestamp = now_iso()
        profile = {
            'email': email,
            'name': name or email.split('@')[0],
            'role': role,
            'organization_id': None,
            'phone': None,
            'status': 'active',
            'created_at': timestamp,
            'updated_at': timestamp,
        }
        profile.update(extra)
        db.reference(f'profiles/{uid}').set(profile)
        return profile

    @staticmethod
    def _session_user(uid: str, email: Optional[str], role: str, profile: Optional[Dict]) -> Dict:
        return {'id': uid, 'email': email, 'role': role, 'profile': profile}

    def verify_id_token(self, id_token: str) -> Dict:
        """
        Verify a Firebase ID token and load the caller's profile

        Args:
            id_token: Firebase ID token from the frontend

        Returns:
            Session user dict {id, email, role, profile}

        Raises:
            ValueError: If the token is invalid or expired
        """
        try:
            decoded_token = auth.verify_id_token(id_token)
        except auth.ExpiredIdTokenError:
            raise ValueError('Token has expired')
        except auth.RevokedIdTokenError:
            raise ValueError('Token has been revoked')
        except auth.InvalidIdTokenError:
            raise ValueError('Invalid ID token')
        except auth.UserDisabledError:
            raise ValueError('User account is disabled')
        except Exception as e:
            logger.error(f"Error verifying token: {e}")
            raise ValueError(f'Token verification failed: {str(e)}')

        uid = decoded_token['uid']
        profile = db.reference(f'profiles/{uid}').get()

        if not profile:
            # First sign-in through a federated provider
            profile = self._create_federated_profile(decoded_token)

        role = profile.get('role') or decoded_token.get('role') or 'public'
        return self._session_user(uid, decoded_token.get('email') or profile.get('email'), role, profile)

    def _create_federated_profile(self, decoded_token: Dict) -> Dict:
        uid = decoded_token['uid']
        email = decoded_token.get('email') or 'unknown'
        profile = self._write_profile(uid, email, decoded_token.get('name') or '', 'public')
        logger.info(redact_pii(f"Federated user profile created: {email} (UID: {hash_user_id(uid)})"))
        return profile

    def get_user_profile(self, uid: str) -> Optional[Dict]:
        profile = db.reference(f'profiles/{uid}').get()
        if not profile:
            return None
        return {'id': uid, **profile}

    def get_profile_by_email(self, email: str) -> Optional[Dict]:
        """Look up a profile by e-mail (case-insensitive)"""
        wanted = (email or '').strip().lower()
        for profile in snapshot_to_list(db.reference('profiles').get()):
            if (profile.get('email') or '').lower() == wanted:
                return profile
        return None

    def update_user_profile(self, uid: str, updates: Dict) -> Dict:
        """
        Update the caller's own profile

        Only name and phone are writable here; role and organization changes
        go through the organization endpoints.

        Raises:
            ValidationError: No allowed fields in updates
            NotFoundError: Profile does not exist
        """
        allowed_fields = ['name', 'phone']
        filtered = {k: v for k, v in (updates or {}).items() if k in allowed_fields}

        if not filtered:
            raise ValidationError('No valid fields to update')

        if db.reference(f'profiles/{uid}').get() is None:
            raise NotFoundError('Profile not found')

        if 'name' in filtered:
            filtered['name'] = self.sanitize_name(filtered['name'])
            if not filtered['name']:
                raise ValidationError('Name cannot be empty')
            auth.update_user(uid, display_name=filtered['name'])

        if 'phone' in filtered:
            filtered['phone'] = clean(str(filtered['phone'] or ''), tags=[], strip=True).strip() or None

        filtered['updated_at'] = now_iso()
        db.reference(f'profiles/{uid}').update(filtered)

        return self.get_user_profile(uid)

    def change_password(self, uid: str, new_password: str):
        """
        Raises:
            ValidationError: Password does not meet strength requirements
        """
        valid, error = self.validate_password(new_password)
        if not valid:
            raise ValidationError(error)

        auth.update_user(uid, password=new_password)
        logger.info(f"Password changed for user: {hash_user_id(uid)}")

    def set_user_role(self, uid: str, role: str) -> Dict:
        """Set the role custom claim and mirror it in the profile"""
        if role not in ROLES:
            raise ValidationError(f"Invalid role. Must be one of: {', '.join(ROLES)}")

        auth.set_custom_user_claims(uid, {'role': role})
        db.reference(f'profiles/{uid}').update({'role': role, 'updated_at': now_iso()})
        logger.info(f"Role of {hash_user_id(uid)} set to {role}")
        return self.get_user_profile(uid)

    def list_users(self, role: Optional[str] = None) -> List[Dict]:
        """All profiles, optionally filtered by role, newest first"""
        users = snapshot_to_list(db.reference('profiles').get())
        if role:
            users = [u for u in users if u.get('role') == role]
        return sorted(users, key=lambda u: u.get('created_at') or '', reverse=True)

    def revoke_refresh_tokens(self, uid: str):
        """
        Revoke all refresh tokens for a user (force logout)

        Raises:
            ValueError: If revocation fails
        """
        try:
            auth.revoke_refresh_tokens(uid)
            logger.info(f"Refresh tokens revoked for user: {hash_user_id(uid)}")
        except auth.UserNotFoundError:
            raise ValueError('User not found')
