"""
Media URL validation for report photos, field report photos and crowdsourced media.

A media reference is either a storage path returned by POST /api/uploads
("/uploads/<bucket>/<path>") or an external HTTPS link to an image or video.
External links are restricted to public hosts so the service never ends up
pointing clients (or itself) at internal addresses.

Usage:
    from utils.url_validator import validate_media_url

    is_valid, error = validate_media_url(payload.get('photo_url'))
    if not is_valid:
        return jsonify({'error': error}), 400
"""

import posixpath
from urllib.parse import urlparse
from typing import Optional, Tuple


STORAGE_PREFIX = '/uploads/'
MAX_URL_LENGTH = 2048

# Private IPv4 ranges
PRIVATE_IP_PREFIXES = ('10.', '192.168.', '169.254.') + tuple(f'172.{n}.' for n in range(16, 32))
LOCAL_HOSTS = ('localhost', '127.0.0.1', '0.0.0.0', '::1')

IMAGE_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.gif', '.webp', '.heic')
VIDEO_EXTENSIONS = ('.mp4', '.webm', '.mov')
MEDIA_EXTENSIONS = IMAGE_EXTENSIONS + VIDEO_EXTENSIONS


def is_storage_path(url: str) -> bool:
    """
    True for normalized '/uploads/...' paths without traversal.

    Examples:
        >>> is_storage_path('/uploads/emergency-reports/abc/photo.jpg')
        True
        >>> is_storage_path('/uploads/../secrets.env')
        False
    """
    if not url.startswith(STORAGE_PREFIX):
        return False
    normalized = posixpath.normpath(url)
    return normalized.startswith(STORAGE_PREFIX) and '..' not in url.split('/')


def validate_media_url(url: Optional[str]) -> Tuple[bool, Optional[str]]:
    """
    Validate a photo or video reference.

    Returns:
        (True, None) when valid, (False, error_message) otherwise

    Examples:
        >>> validate_media_url(None)
        (True, None)
        >>> validate_media_url('https://cdn.example.org/flood.jpg')
        (True, None)
        >>> validate_media_url('http://cdn.example.org/flood.jpg')
        (False, 'Only HTTPS URLs are allowed')
        >>> validate_media_url('https://192.168.1.10/a.png')
        (False, 'Private network URLs not allowed')
    """
    if not url:
        return (True, None)

    if not isinstance(url, str):
        return (False, 'URL must be a string')

    if len(url) > MAX_URL_LENGTH:
        return (False, f'URL too long (max {MAX_URL_LENGTH} characters)')

    if url.startswith('/'):
        if is_storage_path(url):
            return (True, None)
        return (False, 'Invalid storage path')

    try:
        parsed = urlparse(url)
    except ValueError:
        return (False, 'Invalid URL format')

    if parsed.scheme != 'https':
        return (False, 'Only HTTPS URLs are allowed')

    hostname = parsed.hostname
    if not hostname:
        return (False, 'Invalid hostname')

    if hostname in LOCAL_HOSTS or hostname.startswith('127.'):
        return (False, 'Local URLs not allowed')

    if hostname.startswith(PRIVATE_IP_PREFIXES):
        return (False, 'Private network URLs not allowed')

    if not parsed.path.lower().endswith(MEDIA_EXTENSIONS):
        return (False, f'Only image or video files allowed: {", ".join(MEDIA_EXTENSIONS)}')

    return (True, None)
