"""
API tests for polling, reading and deleting notifications
"""
from services.notification_service import NotificationService
from tests.conftest import bearer


def seed_notifications(database):
    database.seed('notifications/resp1', {
        'n1': {'type': 'new_assignment', 'title': 'Tugas Baru', 'created_at': '2026-01-02T00:00:00+00:00'},
        'n2': {'type': 'team_invitation', 'title': 'Undangan Operasi', 'created_at': '2026-01-03T00:00:00+00:00',
               'read_at': '2026-01-03T01:00:00+00:00'},
        'n3': {'type': 'new_field_report', 'title': 'Laporan Lapangan', 'created_at': '2026-01-04T00:00:00+00:00'},
    })


class TestListNotifications:

    def test_newest_first_with_unread_count(self, client, world):
        seed_notifications(world)
        response = client.get('/api/notifications', headers=bearer('resp1'))

        assert response.status_code == 200
        assert [n['id'] for n in response.json['notifications']] == ['n3', 'n2', 'n1']
        assert response.json['unread_count'] == 2

    def test_unread_only_and_limit(self, client, world):
        seed_notifications(world)
        response = client.get('/api/notifications?unread=true&limit=1', headers=bearer('resp1'))
        assert [n['id'] for n in response.json['notifications']] == ['n3']
        assert response.json['unread_count'] == 2

    def test_other_users_notifications_are_private(self, client, world):
        seed_notifications(world)
        response = client.get('/api/notifications', headers=bearer('resp2'))
        assert response.json == {'notifications': [], 'unread_count': 0}

    def test_requires_login(self, client, world):
        assert client.get('/api/notifications').status_code == 401


class TestAcknowledge:

    def test_mark_one_read(self, client, world):
        seed_notifications(world)
        response = client.patch('/api/notifications/n1', headers=bearer('resp1'))
        assert response.status_code == 200
        assert response.json['notification']['read_at']
        assert world.read('notifications/resp1/n1/read_at')

    def test_mark_read_keeps_original_timestamp(self, client, world):
        seed_notifications(world)
        client.patch('/api/notifications/n2', headers=bearer('resp1'))
        assert world.read('notifications/resp1/n2/read_at') == '2026-01-03T01:00:00+00:00'

    def test_mark_all_read(self, client, world):
        seed_notifications(world)
        response = client.post('/api/notifications/mark-all-read', headers=bearer('resp1'))
        assert response.json['count'] == 2

        response = client.patch('/api/notifications', headers=bearer('resp1'))
        assert response.json['count'] == 0
        assert client.get('/api/notifications', headers=bearer('resp1')).json['unread_count'] == 0

    def test_delete(self, client, world):
        seed_notifications(world)
        assert client.delete('/api/notifications/n1', headers=bearer('resp1')).status_code == 200
        assert world.read('notifications/resp1/n1') is None
        assert client.delete('/api/notifications/n1', headers=bearer('resp1')).status_code == 404

    def test_unknown_notification(self, client, world):
        assert client.patch('/api/notifications/nope', headers=bearer('resp1')).status_code == 404


class TestNotificationService:

    def setup_method(self):
        self.service = NotificationService()

    def test_notify_many_skips_duplicates_and_blanks(self, fake_db):
        sent = self.service.notify_many(['u1', 'u2', 'u1', None, ''], 'new_field_report', 'Laporan Lapangan')
        assert sent == 2
        assert len(fake_db.read('notifications/u1')) == 1
        assert len(fake_db.read('notifications/u2')) == 1

    def test_created_notification_is_unread(self, fake_db):
        notification = self.service.create_notification('u1', 'team_invitation', 'Undangan Operasi',
                                                         reference_type='response_operation', reference_id='op1')
        assert notification['read_at'] is None
        stored = fake_db.read(f"notifications/u1/{notification['id']}")
        assert stored['reference_id'] == 'op1'
        assert 'read_at' not in stored
