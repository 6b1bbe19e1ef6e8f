"""
Tests for role-based access control helpers
"""
from utils.rbac import (
    PERMISSIONS, get_user_role, has_permission, is_admin, is_org_member, require_role, user_org_id
)


class TestHasPermission:

    def test_admin_has_everything(self):
        assert has_permission('admin', 'org:delete') is True
        assert has_permission('admin', 'anything:at_all') is True

    def test_org_admin(self):
        assert has_permission('org_admin', 'report:assign') is True
        assert has_permission('org_admin', 'team:delete') is True
        assert has_permission('org_admin', 'contribution:create') is False

    def test_responder(self):
        assert has_permission('org_responder', 'log:write') is True
        assert has_permission('org_responder', 'report:assign') is False
        assert has_permission('org_responder', 'response:write') is False

    def test_public(self):
        assert has_permission('public', 'report:create') is True
        assert has_permission('public', 'report:read') is False

    def test_unknown_role(self):
        assert has_permission('hacker', 'report:create') is False
        assert has_permission(None, 'report:create') is False

    def test_category_wildcard(self):
        PERMISSIONS['auditor'] = ['log:*']
        try:
            assert has_permission('auditor', 'log:read') is True
            assert has_permission('auditor', 'org:read') is False
        finally:
            del PERMISSIONS['auditor']


class TestUserHelpers:

    def test_role_defaults_to_public(self):
        assert get_user_role(None) == 'public'
        assert get_user_role({'id': 'u1'}) == 'public'

    def test_profile_role_wins_over_token_role(self):
        user = {'id': 'u1', 'role': 'public', 'profile': {'role': 'org_admin'}}
        assert get_user_role(user) == 'org_admin'

    def test_token_role_used_without_profile_role(self):
        assert get_user_role({'id': 'u1', 'role': 'admin', 'profile': {}}) == 'admin'

    def test_require_role(self):
        check = require_role(['org_admin', 'admin'])
        assert check({'id': 'u1', 'profile': {'role': 'admin'}}) is True
        assert check({'id': 'u1', 'profile': {'role': 'org_responder'}}) is False
        assert check(None) is False

    def test_org_membership(self):
        assert is_org_member({'organization_id': 'org1'}, 'org1') is True
        assert is_org_member({'organization_id': 'org1'}, 'org2') is False
        assert is_org_member(None, 'org1') is False
        assert is_org_member({'organization_id': None}, None) is False

    def test_admin_and_org_id(self):
        user = {'id': 'u1', 'profile': {'role': 'admin', 'organization_id': 'org9'}}
        assert is_admin(user) is True
        assert user_org_id(user) == 'org9'
        assert user_org_id(None) is None
