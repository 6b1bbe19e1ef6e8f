"""
API tests for report assignments: manager side and responder lifecycle
"""
import pytest

from tests.conftest import bearer

FLOODED_HOUSE = {
    'full_name': 'Siti', 'phone_number': '081234567890', 'description': 'Rumah terendam setinggi dada',
    'assistance_type': 'evacuation', 'latitude': -6.226, 'longitude': 106.901,
    'status': 'verified', 'dispatch_status': 'dispatched', 'assigned_operation_id': 'op1',
}


@pytest.fixture
def report(world):
    world.seed('emergency_reports/r1', FLOODED_HOUSE)
    return world


def assign(client, assignee='resp1', **extra):
    return client.post('/api/operations/op1/assignments',
                       json={'report_id': 'r1', 'assigned_to': assignee, **extra},
                       headers=bearer('orgadmin1'))


class TestCreateAssignment:

    def test_assign_report_to_member(self, client, report):
        response = assign(client, priority='high', notes='Bawa perahu karet')

        assert response.status_code == 201
        assignment = response.json['assignment']
        assert assignment['status'] == 'pending'
        assert assignment['priority'] == 'high'
        assert assignment['report_type'] == 'emergency_report'
        assert assignment['assigned_by'] == 'orgadmin1'
        assert report.read('emergency_reports/r1/dispatch_status') == 'assigned'

        notifications = list(report.read('notifications/resp1').values())
        assert notifications[0]['type'] == 'new_assignment'
        assert notifications[0]['reference_id'] == assignment['id']

    def test_assignee_must_be_accepted_member(self, client, report):
        response = assign(client, assignee='resp2')
        assert response.status_code == 400
        assert response.json['error'] == 'Assignee must be an accepted member of this operation'

    def test_report_must_exist(self, client, world):
        response = assign(client)
        assert response.status_code == 404
        assert response.json['error'] == 'Report not found'

    def test_duplicate_assignment(self, client, report):
        assign(client)
        response = assign(client)
        assert response.status_code == 400
        assert response.json['error'] == 'This report is already assigned to this responder'

    def test_missing_fields(self, client, report):
        response = client.post('/api/operations/op1/assignments', json={'report_id': 'r1'},
                               headers=bearer('orgadmin1'))
        assert response.status_code == 400

    def test_contribution_assignment_marks_status(self, client, world):
        world.seed('contributions/c1', {'full_name': 'Harun', 'contribution_type': 'shelter',
                                        'latitude': -6.24, 'longitude': 106.91, 'status': 'verified'})
        response = client.post('/api/operations/op1/assignments',
                               json={'report_id': 'c1', 'assigned_to': 'resp1'},
                               headers=bearer('orgadmin1'))
        assert response.status_code == 201
        assert response.json['assignment']['report_type'] == 'contribution'
        assert world.read('contributions/c1/status') == 'assigned'

        client.delete(f"/api/assignments/{response.json['assignment']['id']}", headers=bearer('orgadmin1'))
        assert world.read('contributions/c1/status') == 'verified'

    def test_other_org_cannot_assign(self, client, report):
        response = client.post('/api/operations/op1/assignments',
                               json={'report_id': 'r1', 'assigned_to': 'resp1'},
                               headers=bearer('orgadmin2'))
        assert response.status_code == 403


class TestManageAssignment:

    def test_list_operation_assignments(self, client, report):
        assign(client)
        response = client.get('/api/operations/op1/assignments', headers=bearer('resp1'))

        assert response.status_code == 200
        assignment = response.json['assignments'][0]
        assert assignment['assignee_name'] == 'Budi'
        assert assignment['assigner_name'] == 'Ayu'
        assert assignment['report']['category'] == 'evacuation'

    def test_update_priority(self, client, report):
        assignment_id = assign(client).json['assignment']['id']
        response = client.patch(f'/api/assignments/{assignment_id}', json={'priority': 'urgent'},
                                headers=bearer('orgadmin1'))
        assert response.status_code == 200
        assert report.read(f'assignments/{assignment_id}/priority') == 'urgent'

        response = client.patch(f'/api/assignments/{assignment_id}', json={'priority': 'whenever'},
                                headers=bearer('orgadmin1'))
        assert response.status_code == 400

    def test_reassign_resets_progress(self, client, report):
        report.seed('operation_members/op1/resp2', {'role': 'responder', 'status': 'accepted'})
        assignment_id = assign(client).json['assignment']['id']
        client.patch(f'/api/my-assignments/{assignment_id}', json={'status': 'accepted'}, headers=bearer('resp1'))

        response = client.patch(f'/api/assignments/{assignment_id}', json={'assigned_to': 'resp2'},
                                headers=bearer('orgadmin1'))

        assert response.status_code == 200
        stored = report.read(f'assignments/{assignment_id}')
        assert stored['assigned_to'] == 'resp2'
        assert stored['status'] == 'pending'
        assert 'accepted_at' not in stored
        assert list(report.read('notifications/resp2').values())[0]['type'] == 'new_assignment'

    def test_responder_cannot_manage(self, client, report):
        assignment_id = assign(client).json['assignment']['id']
        response = client.patch(f'/api/assignments/{assignment_id}', json={'priority': 'low'},
                                headers=bearer('resp1'))
        assert response.status_code == 403

    def test_delete_returns_report_to_dispatched(self, client, report):
        assignment_id = assign(client).json['assignment']['id']

        response = client.delete(f'/api/assignments/{assignment_id}', headers=bearer('orgadmin1'))

        assert response.status_code == 200
        assert report.read(f'assignments/{assignment_id}') is None
        assert report.read('emergency_reports/r1/dispatch_status') == 'dispatched'

    def test_get_assignment_details(self, client, report):
        assignment_id = assign(client).json['assignment']['id']
        response = client.get(f'/api/assignments/{assignment_id}', headers=bearer('orgadmin1'))
        assert response.json['assignment']['operation']['name'] == 'Banjir Jakarta Timur'

        assert client.get(f'/api/assignments/{assignment_id}', headers=bearer('resp2')).status_code == 403
        assert client.get('/api/assignments/missing', headers=bearer('orgadmin1')).status_code == 404


class TestResponderLifecycle:

    def test_full_lifecycle_resolves_report(self, client, report):
        assignment_id = assign(client).json['assignment']['id']
        url = f'/api/my-assignments/{assignment_id}'

        for status in ('accepted', 'in_progress', 'completed'):
            response = client.patch(url, json={'status': status}, headers=bearer('resp1'))
            assert response.status_code == 200
            assert response.json['assignment']['status'] == status

        stored = report.read(f'assignments/{assignment_id}')
        assert stored['accepted_at'] and stored['started_at'] and stored['completed_at']
        assert report.read('emergency_reports/r1/dispatch_status') == 'resolved'
        assert report.read('emergency_reports/r1/status') == 'resolved'

        types = sorted(n['type'] for n in report.read('notifications/orgadmin1').values())
        assert types == ['assignment_accepted', 'assignment_completed', 'assignment_in_progress']

    def test_deleting_completed_assignment_keeps_resolution(self, client, report):
        assignment_id = assign(client).json['assignment']['id']
        for status in ('accepted', 'in_progress', 'completed'):
            client.patch(f'/api/my-assignments/{assignment_id}', json={'status': status},
                         headers=bearer('resp1'))

        response = client.delete(f'/api/assignments/{assignment_id}', headers=bearer('orgadmin1'))

        assert response.status_code == 200
        assert report.read('emergency_reports/r1/dispatch_status') == 'resolved'
        assert report.read('emergency_reports/r1/status') == 'resolved'

    def test_invalid_transition(self, client, report):
        assignment_id = assign(client).json['assignment']['id']
        response = client.patch(f'/api/my-assignments/{assignment_id}', json={'status': 'completed'},
                                headers=bearer('resp1'))
        assert response.status_code == 400
        assert response.json['error'] == 'Cannot change assignment from pending to completed'

    def test_decline(self, client, report):
        assignment_id = assign(client).json['assignment']['id']
        response = client.patch(f'/api/my-assignments/{assignment_id}',
                                json={'status': 'declined', 'response_notes': 'Perahu rusak'},
                                headers=bearer('resp1'))
        assert response.status_code == 200
        assert report.read(f'assignments/{assignment_id}/response_notes') == 'Perahu rusak'

    def test_other_responders_see_not_found(self, client, report):
        assignment_id = assign(client).json['assignment']['id']
        response = client.patch(f'/api/my-assignments/{assignment_id}', json={'status': 'accepted'},
                                headers=bearer('resp2'))
        assert response.status_code == 404
        assert client.get(f'/api/my-assignments/{assignment_id}', headers=bearer('resp2')).status_code == 404

    def test_list_my_assignments(self, client, report):
        assign(client)
        response = client.get('/api/my-assignments', headers=bearer('resp1'))
        assignments = response.json['assignments']
        assert len(assignments) == 1
        assert assignments[0]['operation']['disaster_type'] == 'flood'

        response = client.get('/api/my-assignments?status=completed', headers=bearer('resp1'))
        assert response.json['count'] == 0
