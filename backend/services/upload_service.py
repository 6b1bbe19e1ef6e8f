"""
Media uploads to Firebase Cloud Storage.

Objects are stored as "<bucket>/<path>" inside the project's default storage
bucket; "bucket" here is a logical folder such as emergency-reports. The API
refers to stored media as "/uploads/<bucket>/<path>".
"""
from datetime import timedelta
from firebase_admin import storage
from typing import Dict, Optional
import logging
import posixpath
import secrets
import time

from services.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_BUCKETS = ['emergency-reports', 'contribution-photos', 'field-reports', 'crowdsource']

CONTENT_TYPES = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
    '.heic': 'image/heic',
    '.mp4': 'video/mp4',
    '.webm': 'video/webm',
    '.mov': 'video/quicktime',
}

SIGNED_URL_TTL = timedelta(hours=1)


def sanitize_path(value: Optional[str]) -> str:
    """
    Normalize a relative object path and reject traversal.

    Examples:
        >>> sanitize_path('reports//abc/photo.jpg')
        'reports/abc/photo.jpg'
        >>> sanitize_path('/leading/slash.png')
        'leading/slash.png'
        >>> sanitize_path('../etc/passwd')
        Traceback (most recent call last):
        ...
        services.errors.ValidationError: Path traversal detected
    """
    if not value or not str(value).strip():
        raise ValidationError('Invalid path segment')

    normalized = posixpath.normpath(str(value).replace('\\', '/')).lstrip('/')
    if normalized in ('', '.') or normalized == '..' or normalized.startswith('../'):
        raise ValidationError('Path traversal detected')
    return normalized


def extension_of(filename: Optional[str]) -> str:
    return posixpath.splitext((filename or '').lower())[1]


class UploadService:
    """Store and serve report media"""

    def __init__(self, max_upload_mb: int = 10):
        self.max_upload_mb = max_upload_mb

    @staticmethod
    def media_type_for(filename: Optional[str], content_type: Optional[str] = None) -> Optional[str]:
        """'photo', 'video' or None for unsupported files"""
        if not content_type or content_type == 'application/octet-stream':
            content_type = CONTENT_TYPES.get(extension_of(filename), '')
        if content_type.startswith('image/'):
            return 'photo'
        if content_type.startswith('video/'):
            return 'video'
        return None

    @staticmethod
    def generate_name(filename: Optional[str]) -> str:
        return f"{int(time.time() * 1000)}_{secrets.token_hex(4)}{extension_of(filename)}"

    def upload(self, file, bucket: str, path: str, max_size_mb: Optional[float] = None) -> Dict:
        """
        Store a werkzeug FileStorage.

        Returns:
            {'bucket', 'path', 'url', 'content_type', 'size'}
        """
        if file is None or not getattr(file, 'filename', None):
            raise ValidationError('bucket, path, and file are required.')
        if bucket not in ALLOWED_BUCKETS:
            raise ValidationError(f"Invalid bucket. Must be one of: {', '.join(ALLOWED_BUCKETS)}")

        safe_path = sanitize_path(path)

        content_type = file.mimetype
        if not content_type or content_type == 'application/octet-stream':
            content_type = CONTENT_TYPES.get(extension_of(file.filename), '')
        if self.media_type_for(file.filename, content_type) is None:
            raise ValidationError('Only image and video files are allowed')

        data = file.read()
        limit_mb = max_size_mb or self.max_upload_mb
        if len(data) > limit_mb * 1024 * 1024:
            raise ValidationError(f'File too large. Max {limit_mb}MB')

        blob = storage.bucket().blob(f'{bucket}/{safe_path}')
        blob.upload_from_string(data, content_type=content_type)
        logger.info(f"Stored {len(data)} bytes at {bucket}/{safe_path}")

        return {
            'bucket': bucket,
            'path': safe_path,
            'url': f'/uploads/{bucket}/{safe_path}',
            'content_type': content_type,
            'size': len(data),
        }

    def signed_url(self, object_path: str) -> str:
        """Short-lived download URL for '/uploads/<object_path>'"""
        safe_path = sanitize_path(object_path)
        if safe_path.split('/', 1)[0] not in ALLOWED_BUCKETS:
            raise NotFoundError('File not found')

        blob = storage.bucket().blob(safe_path)
        if not blob.exists():
            raise NotFoundError('File not found')
        return blob.generate_signed_url(expiration=SIGNED_URL_TTL, version='v4')
