"""
Shared fixtures: an in-memory stand-in for the Firebase Realtime Database
reference API, patched Firebase Auth and Cloud Storage, and a Flask client.
"""
import copy
import os
import sys
from unittest.mock import MagicMock, patch

import pytest
from firebase_admin import auth

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

os.environ['FLASK_ENV'] = 'testing'


def _prune(value):
    """Drop None leaves the way the Realtime Database does"""
    if isinstance(value, dict):
        pruned = {k: _prune(v) for k, v in value.items() if v is not None}
        pruned = {k: v for k, v in pruned.items() if v != {}}
        return pruned or None
    return value


class FakeReference:
    def __init__(self, database, path):
        self._db = database
        self.path = path.strip('/')
        self.key = self.path.rsplit('/', 1)[-1] if self.path else None

    def _parts(self):
        return [p for p in self.path.split('/') if p]

    def get(self):
        node = self._db.data
        for part in self._parts():
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    def set(self, value):
        parts = self._parts()
        value = _prune(copy.deepcopy(value))
        if not parts:
            self._db.data = value or {}
            return
        node = self._db.data
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = value

    def push(self, value=''):
        ref = self.child(self._db.next_key())
        if value != '':
            ref.set(value)
        return ref

    def update(self, values):
        for key, value in values.items():
            self.child(key).set(value)

    def delete(self):
        self.set(None)

    def child(self, path):
        return FakeReference(self._db, f'{self.path}/{path}' if self.path else path)


class FakeDatabase:
    def __init__(self):
        self.data = {}
        self._counter = 0

    def next_key(self):
        self._counter += 1
        return f'-N{self._counter:04d}'

    def reference(self, path='/', app=None, url=None):
        return FakeReference(self, path or '/')

    def seed(self, path, value):
        FakeReference(self, path).set(value)

    def read(self, path):
        return FakeReference(self, path).get()


@pytest.fixture
def fake_db():
    database = FakeDatabase()
    with patch('firebase_admin.db.reference', database.reference):
        yield database


@pytest.fixture
def firebase_auth():
    """Bearer tokens are the uid itself"""
    def verify(token, *args, **kwargs):
        if token == 'invalid':
            raise auth.InvalidIdTokenError('Invalid ID token')
        return {'uid': token, 'email': f'{token}@example.com'}

    with patch('firebase_admin.auth.verify_id_token', side_effect=verify) as verify_mock, \
            patch('firebase_admin.auth.create_user') as create_user, \
            patch('firebase_admin.auth.set_custom_user_claims') as set_claims, \
            patch('firebase_admin.auth.update_user') as update_user, \
            patch('firebase_admin.auth.revoke_refresh_tokens') as revoke:
        create_user.side_effect = lambda **kwargs: MagicMock(uid=f"uid-{kwargs['email'].split('@')[0]}")
        yield {
            'verify_id_token': verify_mock,
            'create_user': create_user,
            'set_custom_user_claims': set_claims,
            'update_user': update_user,
            'revoke_refresh_tokens': revoke,
        }


@pytest.fixture
def storage_bucket():
    bucket = MagicMock()
    bucket.blob.return_value.generate_signed_url.return_value = 'https://storage.example.com/signed'
    with patch('firebase_admin.storage.bucket', return_value=bucket):
        yield bucket


@pytest.fixture
def flask_app():
    from app import app, limiter
    limiter.enabled = False
    yield app


@pytest.fixture
def client(flask_app, fake_db, firebase_auth, storage_bucket):
    return flask_app.test_client()


def bearer(uid):
    return {'Authorization': f'Bearer {uid}'}


def seed_world(database):
    """
    One organization with an admin and two responders, a super admin, a
    public user and an active flood operation in Jakarta.
    """
    database.seed('organizations/org1', {
        'name': 'Relawan Jakarta', 'slug': 'relawan-jakarta', 'status': 'active',
        'created_at': '2026-01-01T00:00:00+00:00'
    })
    database.seed('organizations/org2', {
        'name': 'Relawan Bandung', 'slug': 'relawan-bandung', 'status': 'active',
        'created_at': '2026-01-01T00:00:00+00:00'
    })
    profiles = {
        'admin1': {'email': 'admin@example.com', 'name': 'Super Admin', 'role': 'admin'},
        'orgadmin1': {'email': 'oa@example.com', 'name': 'Ayu', 'role': 'org_admin', 'organization_id': 'org1'},
        'resp1': {'email': 'r1@example.com', 'name': 'Budi', 'role': 'org_responder',
                  'organization_id': 'org1', 'status': 'active'},
        'resp2': {'email': 'r2@example.com', 'name': 'Citra', 'role': 'org_responder',
                  'organization_id': 'org1', 'status': 'active'},
        'orgadmin2': {'email': 'oa2@example.com', 'name': 'Dewi', 'role': 'org_admin', 'organization_id': 'org2'},
        'resp3': {'email': 'r3@example.com', 'name': 'Eko', 'role': 'org_responder', 'organization_id': 'org2'},
        'citizen1': {'email': 'c1@example.com', 'name': 'Fajar', 'role': 'public'},
    }
    for uid, profile in profiles.items():
        database.seed(f'profiles/{uid}', {**profile, 'created_at': '2026-01-01T00:00:00+00:00'})

    database.seed('operations/op1', {
        'organization_id': 'org1',
        'name': 'Banjir Jakarta Timur',
        'disaster_type': 'flood',
        'disaster_location_name': 'Jakarta Timur',
        'disaster_lat': -6.225,
        'disaster_lng': 106.9,
        'disaster_radius_km': 10,
        'status': 'active',
        'created_by': 'orgadmin1',
        'created_at': '2026-01-02T00:00:00+00:00',
    })
    database.seed('operation_members/op1/resp1', {
        'role': 'responder', 'status': 'accepted', 'invited_by': 'orgadmin1',
        'invited_at': '2026-01-02T01:00:00+00:00'
    })


@pytest.fixture
def world(fake_db):
    seed_world(fake_db)
    return fake_db
