"""
Role-based access control for coordination users.

Roles:
    admin          super admin, every permission
    org_admin      manages an organization's team, operations and reports
    org_responder  field worker receiving assignments
    public         citizens (reports and contributions only)

Permissions are 'category:action' strings. A role holding 'category:*'
gets every action in that category.
"""
from typing import Callable, Dict, Iterable, Optional

ROLES = ['admin', 'org_admin', 'org_responder', 'public']

PERMISSIONS = {
    'admin': ['*'],
    'org_admin': [
        'org:read', 'org:write', 'org:delete',
        'response:read', 'response:write', 'response:delete',
        'report:read', 'report:write', 'report:assign',
        'team:read', 'team:write', 'team:delete',
        'log:read', 'log:write',
    ],
    'org_responder': [
        'org:read',
        'response:read',
        'report:read', 'report:write',
        'team:read',
        'log:read', 'log:write',
    ],
    'public': [
        'report:create',
        'contribution:create',
    ],
}


def has_permission(role: Optional[str], permission: str) -> bool:
    """
    Examples:
        >>> has_permission('admin', 'anything:at_all')
        True
        >>> has_permission('org_responder', 'report:assign')
        False
        >>> has_permission('unknown', 'org:read')
        False
    """
    granted = PERMISSIONS.get(role)
    if not granted:
        return False

    if '*' in granted or permission in granted:
        return True

    category, _, action = permission.partition(':')
    return bool(action) and f'{category}:*' in granted


def get_user_role(user: Optional[Dict]) -> str:
    """Effective role of a session user; the stored profile wins over token claims."""
    if not user:
        return 'public'

    profile = user.get('profile') or {}
    return profile.get('role') or user.get('role') or 'public'


def require_role(allowed_roles: Iterable[str]) -> Callable[[Optional[Dict]], bool]:
    """Build a predicate that accepts session users holding one of allowed_roles."""
    allowed = set(allowed_roles)

    def check(user: Optional[Dict]) -> bool:
        if not user:
            return False
        return get_user_role(user) in allowed

    return check


def is_org_member(profile: Optional[Dict], org_id: Optional[str]) -> bool:
    if not profile or not org_id:
        return False
    return profile.get('organization_id') == org_id


def is_admin(user: Optional[Dict]) -> bool:
    return get_user_role(user) == 'admin'


def user_org_id(user: Optional[Dict]) -> Optional[str]:
    if not user:
        return None
    return (user.get('profile') or {}).get('organization_id')
