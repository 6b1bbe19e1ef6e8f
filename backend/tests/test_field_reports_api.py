"""
API tests for field reports filed during an operation
"""
from tests.conftest import bearer

WATER_LEVEL = {
    'category': 'field_condition',
    'subcategory': 'water_level',
    'title': 'Air naik 50 cm di Kampung Melayu',
    'severity': 'severe',
    'urgency': 'high',
    'latitude': -6.224,
    'longitude': 106.867,
    'affected_count': 120,
}


class TestCreateFieldReport:

    def test_member_files_report(self, client, world):
        response = client.post('/api/operations/op1/field-reports', json=WATER_LEVEL, headers=bearer('resp1'))

        assert response.status_code == 201
        report = response.json['field_report']
        assert report['response_operation_id'] == 'op1'
        assert report['reported_by'] == 'resp1'
        assert report['affected_count'] == 120
        assert world.read(f"field_reports/op1/{report['id']}/title") == WATER_LEVEL['title']

    def test_org_admins_are_notified(self, client, world):
        client.post('/api/operations/op1/field-reports', json=WATER_LEVEL, headers=bearer('resp1'))

        notifications = list(world.read('notifications/orgadmin1').values())
        assert len(notifications) == 1
        assert notifications[0]['type'] == 'new_field_report'
        assert notifications[0]['title'] == 'Laporan Lapangan: Kondisi Lapangan'
        assert world.read('notifications/orgadmin2') is None

    def test_author_is_not_notified(self, client, world):
        world.seed('operation_members/op1/orgadmin1', {'role': 'coordinator', 'status': 'accepted'})
        client.post('/api/operations/op1/field-reports', json=WATER_LEVEL, headers=bearer('orgadmin1'))
        assert world.read('notifications/orgadmin1') is None

    def test_non_members_are_forbidden(self, client, world):
        response = client.post('/api/operations/op1/field-reports', json=WATER_LEVEL, headers=bearer('resp2'))
        assert response.status_code == 403

    def test_admin_may_file(self, client, world):
        response = client.post('/api/operations/op1/field-reports', json=WATER_LEVEL, headers=bearer('admin1'))
        assert response.status_code == 201

    def test_subcategory_must_match_disaster_type(self, client, world):
        # Earthquake-only condition on a flood operation
        response = client.post('/api/operations/op1/field-reports',
                               json={**WATER_LEVEL, 'subcategory': 'aftershock'}, headers=bearer('resp1'))
        assert response.status_code == 400
        assert response.json['error'].startswith('Invalid subcategory for field_condition')

    def test_required_fields(self, client, world):
        response = client.post('/api/operations/op1/field-reports', json={'category': 'incident'},
                               headers=bearer('resp1'))
        assert response.status_code == 400
        assert response.json['error'] == 'category and title are required'

    def test_negative_affected_count(self, client, world):
        response = client.post('/api/operations/op1/field-reports',
                               json={**WATER_LEVEL, 'affected_count': -1}, headers=bearer('resp1'))
        assert response.status_code == 400


class TestListFieldReports:

    def test_list_with_category_filter(self, client, world):
        world.seed('field_reports/op1', {
            'fr1': {'category': 'aid_delivery', 'title': 'Nasi bungkus', 'reported_by': 'resp1',
                    'created_at': '2026-01-03T00:00:00+00:00'},
            'fr2': {'category': 'incident', 'title': 'Warga hanyut', 'reported_by': 'resp1',
                    'created_at': '2026-01-04T00:00:00+00:00'},
        })

        response = client.get('/api/operations/op1/field-reports', headers=bearer('orgadmin1'))
        assert response.status_code == 200
        reports = response.json['field_reports']
        assert [r['id'] for r in reports] == ['fr2', 'fr1']
        assert reports[0]['reporter_name'] == 'Budi'

        response = client.get('/api/operations/op1/field-reports?category=aid_delivery',
                              headers=bearer('orgadmin1'))
        assert [r['id'] for r in response.json['field_reports']] == ['fr1']

    def test_other_organization_cannot_list(self, client, world):
        response = client.get('/api/operations/op1/field-reports', headers=bearer('resp3'))
        assert response.status_code == 403


class TestFieldReportOptions:

    def test_options_for_disaster_type(self, client):
        response = client.get('/api/field-report-options?disaster_type=earthquake')
        options = response.json['options']
        assert 'aftershock' in options['field_condition']
        assert 'water_level' not in options['field_condition']
        assert 'food_distribution' in options['aid_delivery']

    def test_options_without_disaster_type_merge_conditions(self, client):
        options = client.get('/api/field-report-options').json['options']
        assert 'aftershock' in options['field_condition']
        assert 'water_level' in options['field_condition']
