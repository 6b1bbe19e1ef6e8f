"""
API tests for citizen emergency reports, contributions and automatic dispatch
"""
from unittest.mock import MagicMock

from services.dispatch_service import DispatchService
from tests.conftest import bearer

EMERGENCY = {
    'full_name': 'Siti Aminah',
    'phone_number': '0812-3456-7890',
    'description': 'Air masuk rumah setinggi dada, ada lansia',
    'assistance_type': 'evacuation',
    'address': 'Jl. Kampung Melayu Besar',
    'latitude': -6.226,
    'longitude': 106.901,
}

SHELTER = {
    'full_name': 'Harun',
    'phone_number': '081298765432',
    'description': 'Rumah dua lantai bisa menampung warga',
    'contribution_type': 'shelter',
    'capacity': 20,
    'facilities': ['toilet', 'dapur'],
    'consent_statement': 'Saya setuju data ditampilkan',
    'latitude': -6.24,
    'longitude': 106.91,
}

BANDUNG = {'latitude': -6.9175, 'longitude': 107.6191}


class TestEmergencyReports:

    def test_report_inside_operation_is_dispatched(self, client, world):
        response = client.post('/api/emergency-reports', json=EMERGENCY)

        assert response.status_code == 201
        report = response.json['report']
        assert report['status'] == 'needs_verification'
        assert report['dispatch_status'] == 'dispatched'
        assert report['dispatched_to'] == 'org1'
        assert report['dispatched_operation_id'] == 'op1'

        dispatch = response.json['dispatch']
        assert dispatch['dispatched'] is True
        assert dispatch['operation_id'] == 'op1'
        assert dispatch['distance_km'] < 1

        notifications = list(world.read('notifications/orgadmin1').values())
        assert notifications[0]['type'] == 'new_report_dispatched'
        assert notifications[0]['reference_id'] == report['id']

    def test_uncovered_report_notifies_super_admins(self, client, world):
        response = client.post('/api/emergency-reports', json={**EMERGENCY, **BANDUNG})

        assert response.status_code == 201
        assert response.json['report']['dispatch_status'] == 'unassigned'
        assert response.json['dispatch'] == {
            'dispatched': False,
            'message': 'No active response operations cover this location',
            'operation_id': None,
            'organization_id': None,
            'distance_km': None,
        }
        assert list(world.read('notifications/admin1').values())[0]['type'] == 'report_unassigned'
        assert world.read('notifications/orgadmin1') is None

    def test_nearest_operation_wins(self, client, world):
        world.seed('operations/op2', {'organization_id': 'org2', 'name': 'Banjir Kampung Melayu',
                                      'disaster_type': 'flood', 'disaster_lat': -6.2265,
                                      'disaster_lng': 106.9015, 'disaster_radius_km': 5,
                                      'status': 'active'})
        response = client.post('/api/emergency-reports', json=EMERGENCY)
        assert response.json['dispatch']['operation_id'] == 'op2'
        assert response.json['report']['dispatched_to'] == 'org2'

    def test_completed_operations_do_not_receive_reports(self, client, world):
        world.seed('operations/op1/status', 'completed')
        response = client.post('/api/emergency-reports', json=EMERGENCY)
        assert response.json['dispatch']['dispatched'] is False

    def test_validation_errors(self, client, world):
        response = client.post('/api/emergency-reports', json={**EMERGENCY, 'phone_number': '12'})
        assert response.status_code == 400
        assert response.json == {'error': 'Invalid phone number'}

        response = client.post('/api/emergency-reports', json={**EMERGENCY, 'assistance_type': 'pizza'})
        assert response.status_code == 400

        response = client.post('/api/emergency-reports', json={**EMERGENCY, 'latitude': 95})
        assert response.status_code == 400

    def test_missing_body(self, client, world):
        response = client.post('/api/emergency-reports', data='not json', content_type='text/plain')
        assert response.status_code == 400
        assert response.json == {'error': 'Request body is required'}

    def test_description_is_sanitized(self, client, world):
        response = client.post('/api/emergency-reports',
                               json={**EMERGENCY, 'description': '<script>x</script>Tolong kami segera'})
        assert '<script>' not in response.json['report']['description']


class TestContributions:

    def test_shelter_contribution(self, client, world):
        response = client.post('/api/contributions', json=SHELTER)

        assert response.status_code == 201
        contribution = response.json['contribution']
        assert contribution['status'] == 'pending'
        assert contribution['capacity'] == 20
        assert contribution['facilities'] == ['toilet', 'dapur']
        assert contribution['show_contact_info'] is False
        assert contribution['dispatched_to'] == 'org1'

    def test_contact_flag_strings_are_parsed(self, client, world):
        response = client.post('/api/contributions', json={**SHELTER, 'show_contact_info': 'false'})
        assert response.json['contribution']['show_contact_info'] is False

        response = client.post('/api/contributions', json={**SHELTER, 'show_contact_info': 'true'})
        assert response.json['contribution']['show_contact_info'] is True

    def test_goods_need_quantity_and_unit(self, client, world):
        goods = {**SHELTER, 'contribution_type': 'food_water'}
        response = client.post('/api/contributions', json=goods)
        assert response.status_code == 400
        assert response.json['error'] == 'quantity is required for this contribution type'

        response = client.post('/api/contributions', json={**goods, 'quantity': 50, 'unit': 'dus'})
        assert response.status_code == 201
        assert response.json['contribution']['unit'] == 'dus'

    def test_consent_required(self, client, world):
        response = client.post('/api/contributions', json={**SHELTER, 'consent_statement': ''})
        assert response.status_code == 400


class TestOrganizationTriage:

    def seed_reports(self, database):
        database.seed('emergency_reports', {
            'mine': {**EMERGENCY, 'status': 'needs_verification', 'dispatch_status': 'dispatched',
                     'dispatched_to': 'org1', 'created_at': '2026-01-03T00:00:00+00:00'},
            'theirs': {**EMERGENCY, 'status': 'needs_verification', 'dispatch_status': 'dispatched',
                       'dispatched_to': 'org2', 'created_at': '2026-01-04T00:00:00+00:00'},
            'loose': {**EMERGENCY, 'status': 'active', 'dispatch_status': 'unassigned',
                      'created_at': '2026-01-02T00:00:00+00:00'},
        })

    def test_org_admin_sees_own_and_undispatched(self, client, world):
        self.seed_reports(world)
        response = client.get('/api/admin/emergency-reports', headers=bearer('orgadmin1'))
        assert response.status_code == 200
        assert [r['id'] for r in response.json['reports']] == ['mine', 'loose']

        response = client.get('/api/admin/emergency-reports', headers=bearer('admin1'))
        assert response.json['count'] == 3

        response = client.get('/api/admin/emergency-reports?dispatch_status=unassigned',
                              headers=bearer('admin1'))
        assert [r['id'] for r in response.json['reports']] == ['loose']

    def test_responders_cannot_triage(self, client, world):
        assert client.get('/api/admin/emergency-reports', headers=bearer('resp1')).status_code == 403

    def test_update_report_status(self, client, world):
        self.seed_reports(world)
        response = client.patch('/api/admin/emergency-reports',
                                json={'id': 'mine', 'status': 'active', 'dispatch_status': 'acknowledged'},
                                headers=bearer('orgadmin1'))

        assert response.status_code == 200
        stored = world.read('emergency_reports/mine')
        assert stored['status'] == 'active'
        assert stored['dispatch_status'] == 'acknowledged'
        assert stored['status_updated_by'] == 'orgadmin1'

    def test_update_other_org_report_forbidden(self, client, world):
        self.seed_reports(world)
        response = client.patch('/api/admin/emergency-reports', json={'id': 'theirs', 'status': 'active'},
                                headers=bearer('orgadmin1'))
        assert response.status_code == 403

    def test_update_validation(self, client, world):
        self.seed_reports(world)
        response = client.patch('/api/admin/emergency-reports', json={'id': 'mine', 'status': 'closed'},
                                headers=bearer('orgadmin1'))
        assert response.status_code == 400

        response = client.patch('/api/admin/emergency-reports', json={'status': 'active'},
                                headers=bearer('orgadmin1'))
        assert response.json == {'error': 'Report ID required'}

        response = client.patch('/api/admin/emergency-reports', json={'id': 'ghost', 'status': 'active'},
                                headers=bearer('orgadmin1'))
        assert response.status_code == 404

    def test_contribution_triage(self, client, world):
        world.seed('contributions/c1', {**SHELTER, 'status': 'pending', 'dispatched_to': 'org1',
                                        'created_at': '2026-01-03T00:00:00+00:00'})
        response = client.get('/api/admin/contributions?type=shelter', headers=bearer('orgadmin1'))
        assert [c['id'] for c in response.json['contributions']] == ['c1']

        response = client.patch('/api/admin/contributions', json={'id': 'c1', 'status': 'verified'},
                                headers=bearer('orgadmin1'))
        assert response.status_code == 200
        assert world.read('contributions/c1/status') == 'verified'

        response = client.patch('/api/admin/contributions', json={'id': 'c1', 'status': 'lost'},
                                headers=bearer('orgadmin1'))
        assert response.status_code == 400


class TestManualDispatch:

    def test_redispatch_stored_report(self, client, world):
        world.seed('emergency_reports/r1', {**EMERGENCY, 'dispatch_status': 'unassigned'})
        response = client.post('/api/dispatch', json={'report_id': 'r1', 'latitude': -6.226, 'longitude': 106.901},
                               headers=bearer('admin1'))

        assert response.status_code == 200
        assert response.json['data']['dispatched'] is True
        assert world.read('emergency_reports/r1/dispatched_to') == 'org1'

    def test_requires_fields(self, client, world):
        response = client.post('/api/dispatch', json={'report_id': 'r1'}, headers=bearer('admin1'))
        assert response.status_code == 400

    def test_public_cannot_dispatch(self, client, world):
        response = client.post('/api/dispatch', json={'report_id': 'r1', 'latitude': 0, 'longitude': 0},
                               headers=bearer('citizen1'))
        assert response.status_code == 403


class TestDispatchService:

    def setup_method(self):
        self.notifications = MagicMock()
        self.service = DispatchService(self.notifications, default_radius_km=10)

    def test_operations_sorted_by_distance(self, world):
        world.seed('operations/op2', {'organization_id': 'org2', 'disaster_lat': -6.23, 'disaster_lng': 106.95,
                                      'status': 'active'})
        world.seed('operations/op3', {'organization_id': 'org2', 'disaster_lat': -6.23, 'disaster_lng': 106.95,
                                      'status': 'suspended'})

        covering = self.service.find_operations_within_radius(-6.226, 106.901)
        assert [o['operation_id'] for o in covering] == ['op1', 'op2']

    def test_default_radius_applies(self, world):
        world.seed('operations/op2', {'organization_id': 'org2', 'disaster_lat': 0, 'disaster_lng': 0,
                                      'status': 'active'})
        # About 8.9 km east of the equator origin
        assert [o['operation_id'] for o in self.service.find_operations_within_radius(0, 0.08)] == ['op2']

    def test_invalid_inputs_never_raise(self, world):
        assert self.service.dispatch_report('r1', 200, 0).message == 'Invalid coordinates'
        assert self.service.dispatch_report('r1', 0, 0, 'rumor').dispatched is False

    def test_unknown_report_type_notifies_admins(self, world):
        self.notifications.notify_many.return_value = 1
        result = self.service.process_new_report_dispatch('r1', 0, 0, 'rumor')
        assert result.dispatched is False
        args = self.notifications.notify_many.call_args[0]
        assert args[0] == ['admin1']
        assert args[1] == 'report_unassigned'
