"""
Tests for media URL validation (storage paths and external HTTPS media).
"""

import pytest
from utils.url_validator import is_storage_path, validate_media_url


class TestStoragePaths:

    def test_upload_paths_accepted(self):
        assert is_storage_path('/uploads/emergency-reports/abc/photo.jpg') is True
        assert validate_media_url('/uploads/crowdsource/p1/clip.mp4') == (True, None)

    def test_traversal_rejected(self):
        assert is_storage_path('/uploads/../secrets.env') is False
        assert validate_media_url('/uploads/../../etc/passwd') == (False, 'Invalid storage path')

    def test_other_local_paths_rejected(self):
        assert validate_media_url('/static/photo.jpg') == (False, 'Invalid storage path')


class TestExternalMedia:

    def test_empty_is_allowed(self):
        assert validate_media_url(None) == (True, None)
        assert validate_media_url('') == (True, None)

    @pytest.mark.parametrize('url', [
        'https://cdn.example.org/flood.jpg',
        'https://cdn.example.org/photos/banjir.PNG',
        'https://media.example.org/clip.mp4',
        'https://media.example.org/clip.webm',
    ])
    def test_https_media_allowed(self, url):
        assert validate_media_url(url) == (True, None)

    def test_http_rejected(self):
        assert validate_media_url('http://cdn.example.org/flood.jpg') == (False, 'Only HTTPS URLs are allowed')

    @pytest.mark.parametrize('url', [
        'https://localhost/a.jpg',
        'https://127.0.0.1/a.jpg',
        'https://127.1.2.3/a.jpg',
    ])
    def test_local_hosts_rejected(self, url):
        assert validate_media_url(url) == (False, 'Local URLs not allowed')

    @pytest.mark.parametrize('url', [
        'https://10.1.2.3/a.jpg',
        'https://192.168.0.10/a.jpg',
        'https://172.16.5.4/a.jpg',
        'https://169.254.169.254/latest/meta-data.jpg',
    ])
    def test_private_networks_rejected(self, url):
        assert validate_media_url(url) == (False, 'Private network URLs not allowed')

    def test_public_172_range_allowed(self):
        assert validate_media_url('https://172.217.1.1/a.jpg') == (True, None)

    def test_non_media_extension_rejected(self):
        is_valid, error = validate_media_url('https://cdn.example.org/report.pdf')
        assert is_valid is False
        assert error.startswith('Only image or video files allowed')

    def test_non_string_rejected(self):
        assert validate_media_url(123) == (False, 'URL must be a string')

    def test_overlong_url_rejected(self):
        is_valid, error = validate_media_url('https://cdn.example.org/' + 'a' * 2100 + '.jpg')
        assert is_valid is False
        assert error.startswith('URL too long')
