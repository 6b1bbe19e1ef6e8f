"""
Tests for validation utilities
"""
import pytest
from utils.validators import (
    ContactValidator, CoordinateValidator, OperationValidator, ReportValidator,
    FIELD_CONDITION_BY_DISASTER, sanitize_text
)


def emergency_payload(**overrides):
    payload = {
        'full_name': 'Siti Aminah',
        'phone_number': '0812-3456-7890',
        'description': 'Air masuk rumah setinggi dada, ada lansia',
        'assistance_type': 'evacuation',
        'latitude': -6.2251,
        'longitude': 106.9004,
    }
    payload.update(overrides)
    return payload


def contribution_payload(**overrides):
    payload = {
        'full_name': 'Pak Harun',
        'phone_number': '+62 811 222 3333',
        'description': 'Rumah dua lantai bisa menampung pengungsi',
        'contribution_type': 'shelter',
        'capacity': 20,
        'facilities': ['toilet', 'dapur'],
        'consent_statement': 'Saya setuju data saya ditampilkan',
        'latitude': -6.21,
        'longitude': 106.85,
    }
    payload.update(overrides)
    return payload


class TestCoordinateValidator:
    """Test suite for CoordinateValidator"""

    def test_valid_coordinates(self):
        assert CoordinateValidator.validate_coordinates(-6.2088, 106.8456) is True
        assert CoordinateValidator.validate_coordinates(0, 0) is True
        assert CoordinateValidator.validate_coordinates(90, 180) is True
        assert CoordinateValidator.validate_coordinates(-90, -180) is True

    def test_invalid_coordinates(self):
        assert CoordinateValidator.validate_coordinates(91, 0) is False
        assert CoordinateValidator.validate_coordinates(0, -181) is False
        assert CoordinateValidator.validate_coordinates('invalid', 0) is False
        assert CoordinateValidator.validate_coordinates(None, 0) is False

    def test_pair_required(self):
        assert CoordinateValidator.validate_pair({}) == (False, 'latitude and longitude are required')

    def test_optional_pair_may_be_absent(self):
        assert CoordinateValidator.validate_pair({}, required=False) == (True, None)

    def test_half_pair_rejected(self):
        ok, error = CoordinateValidator.validate_pair({'latitude': -6.2}, required=False)
        assert ok is False
        assert 'together' in error

    def test_pair_out_of_range(self):
        ok, error = CoordinateValidator.validate_pair({'latitude': -6.2, 'longitude': 200})
        assert ok is False
        assert error == 'longitude must be between -180 and 180'


class TestContactValidator:

    @pytest.mark.parametrize('phone', ['081234567890', '0812-3456-7890', '+62 812 3456 7890', '(021) 555 1234'])
    def test_valid_phone_numbers(self, phone):
        assert ContactValidator.validate_phone(phone) is True

    @pytest.mark.parametrize('phone', ['', None, '12345', 'nomor saya', '+62 812 3456 7890 1234 5'])
    def test_invalid_phone_numbers(self, phone):
        assert ContactValidator.validate_phone(phone) is False

    def test_email(self):
        assert ContactValidator.validate_email('relawan@example.org') is True
        assert ContactValidator.validate_email('not-an-email') is False


class TestReportValidator:

    def test_valid_emergency_report(self):
        assert ReportValidator.validate_emergency_report(emergency_payload()) == (True, None)

    def test_missing_fields_listed(self):
        ok, error = ReportValidator.validate_emergency_report(emergency_payload(full_name='', phone_number=None))
        assert ok is False
        assert error == 'Missing required fields: full_name, phone_number'

    def test_description_too_short(self):
        ok, error = ReportValidator.validate_emergency_report(emergency_payload(description='Tolong'))
        assert ok is False
        assert 'between 10 and 2000' in error

    def test_description_too_long(self):
        ok, _ = ReportValidator.validate_emergency_report(emergency_payload(description='a' * 2001))
        assert ok is False

    def test_invalid_assistance_type(self):
        ok, error = ReportValidator.validate_emergency_report(emergency_payload(assistance_type='pizza'))
        assert ok is False
        assert error.startswith('Invalid assistance_type')

    def test_invalid_email(self):
        ok, error = ReportValidator.validate_emergency_report(emergency_payload(email='siti@'))
        assert (ok, error) == (False, 'Invalid email format')

    def test_photo_url_storage_path_allowed(self):
        payload = emergency_payload(photo_url='/uploads/emergency-reports/2026/photo.jpg')
        assert ReportValidator.validate_emergency_report(payload) == (True, None)

    def test_photo_url_private_host_rejected(self):
        ok, error = ReportValidator.validate_emergency_report(
            emergency_payload(photo_url='https://10.0.0.5/photo.jpg'))
        assert ok is False
        assert error.startswith('Invalid photo_url')

    def test_valid_shelter_contribution(self):
        assert ReportValidator.validate_contribution(contribution_payload()) == (True, None)

    def test_shelter_requires_positive_capacity(self):
        ok, error = ReportValidator.validate_contribution(contribution_payload(capacity=0))
        assert (ok, error) == (False, 'capacity must be a positive number')

    def test_goods_need_quantity_and_unit(self):
        payload = contribution_payload(contribution_type='food_water', capacity=None, quantity=50)
        ok, error = ReportValidator.validate_contribution(payload)
        assert (ok, error) == (False, 'unit is required for this contribution type')

        payload['unit'] = 'dus'
        assert ReportValidator.validate_contribution(payload) == (True, None)

    def test_consent_required(self):
        ok, error = ReportValidator.validate_contribution(contribution_payload(consent_statement=''))
        assert (ok, error) == (False, 'consent_statement is required')


class TestOperationValidator:

    def test_valid_operation(self):
        payload = {
            'name': 'Banjir Bekasi', 'disaster_type': 'flood', 'disaster_location_name': 'Bekasi',
            'disaster_lat': -6.24, 'disaster_lng': 106.99, 'disaster_radius_km': 5,
        }
        assert OperationValidator.validate_operation(payload) == (True, None)

    def test_unknown_disaster_type(self):
        payload = {
            'name': 'X', 'disaster_type': 'meteor', 'disaster_location_name': 'Y',
            'disaster_lat': 0, 'disaster_lng': 0,
        }
        ok, error = OperationValidator.validate_operation(payload)
        assert ok is False
        assert error.startswith('Invalid disaster_type')

    def test_zero_coordinates_are_present(self):
        payload = {
            'name': 'X', 'disaster_type': 'tsunami', 'disaster_location_name': 'Y',
            'disaster_lat': 0, 'disaster_lng': 0,
        }
        assert OperationValidator.validate_operation(payload) == (True, None)

    def test_radius_must_be_positive(self):
        assert OperationValidator.validate_operation_update({'disaster_radius_km': 0})[0] is False
        assert OperationValidator.validate_operation_update({'disaster_radius_km': 'far'})[0] is False

    def test_invalid_status(self):
        ok, error = OperationValidator.validate_operation_update({'status': 'paused'})
        assert ok is False
        assert 'active, completed, suspended' in error

    def test_field_condition_subcategories_follow_disaster_type(self):
        assert OperationValidator.subcategories_for('field_condition', 'earthquake') == \
            FIELD_CONDITION_BY_DISASTER['earthquake']

    def test_field_condition_subcategories_merged_without_disaster_type(self):
        merged = OperationValidator.subcategories_for('field_condition')
        assert 'water_level' in merged
        assert 'lava_flow' in merged
        assert len(merged) == len(set(merged))

    def test_field_report_subcategory_checked_against_disaster(self):
        payload = {'category': 'field_condition', 'title': 'Retakan jalan', 'subcategory': 'road_crack'}
        assert OperationValidator.validate_field_report(payload, 'earthquake') == (True, None)
        ok, error = OperationValidator.validate_field_report(payload, 'flood')
        assert ok is False
        assert error.startswith('Invalid subcategory for field_condition')

    def test_field_report_requires_category_and_title(self):
        assert OperationValidator.validate_field_report({'category': 'incident'}) == \
            (False, 'category and title are required')

    def test_field_report_enums(self):
        base = {'category': 'incident', 'title': 'Warga terluka'}
        assert OperationValidator.validate_field_report({**base, 'severity': 'catastrophic'})[0] is False
        assert OperationValidator.validate_field_report({**base, 'urgency': 'critical'}) == (True, None)
        assert OperationValidator.validate_field_report({**base, 'affected_count': -1})[0] is False

    def test_assignment(self):
        assert OperationValidator.validate_assignment({'report_id': 'r1', 'assigned_to': 'u1'}) == (True, None)
        assert OperationValidator.validate_assignment(
            {'report_id': 'r1', 'assigned_to': 'u1', 'priority': 'asap'})[0] is False


class TestSanitizeText:

    def test_strips_html(self):
        assert sanitize_text('<script>alert(1)</script>Banjir') == 'alert(1)Banjir'

    def test_truncates(self):
        assert sanitize_text('abcdef', 3) == 'abc'

    def test_none_becomes_empty(self):
        assert sanitize_text(None) == ''
