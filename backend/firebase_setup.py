"""
Firebase setup for the coordination backend.

Credentials can be provided two ways:
1. Base64-encoded service account JSON (FIREBASE_CREDENTIALS_BASE64) - PaaS deploys
2. File path (FIREBASE_CREDENTIALS_PATH) - local development, VPS

The default Firebase app gives the service Auth, the Realtime Database and the
Cloud Storage bucket used for report photos and crowdsourced media.
"""

import os
import json
import base64
import logging

import firebase_admin
from firebase_admin import credentials

logger = logging.getLogger(__name__)


def get_firebase_credentials(base64_creds=None, cred_path=None):
    """
    Get Firebase credentials from arguments or environment.

    Args:
        base64_creds: Base64 encoded service account JSON (defaults to env)
        cred_path: Path to a service account JSON file (defaults to env)

    Returns:
        firebase_admin.credentials.Certificate

    Raises:
        ValueError: If no valid credentials are found
    """
    base64_creds = base64_creds or os.getenv('FIREBASE_CREDENTIALS_BASE64')
    if base64_creds:
        try:
            json_str = base64.b64decode(base64_creds).decode('utf-8')
            return credentials.Certificate(json.loads(json_str))
        except Exception as e:
            raise ValueError(f"Failed to decode FIREBASE_CREDENTIALS_BASE64: {e}")

    cred_path = cred_path or os.getenv('FIREBASE_CREDENTIALS_PATH')
    if cred_path and os.path.exists(cred_path):
        return credentials.Certificate(cred_path)

    raise ValueError(
        "No Firebase credentials found. Set either:\n"
        "  - FIREBASE_CREDENTIALS_BASE64 (base64-encoded service account JSON)\n"
        "  - FIREBASE_CREDENTIALS_PATH (path to service account JSON file)"
    )


def initialize_firebase(settings):
    """
    Initialize the default Firebase app once.

    Args:
        settings: Flask config mapping (INIT_FIREBASE, FIREBASE_* keys)

    Returns:
        The firebase_admin App, or None when initialization is disabled
    """
    if not settings.get('INIT_FIREBASE', True):
        logger.info("Firebase initialization disabled for this environment")
        return None

    if firebase_admin._apps:
        return firebase_admin.get_app()

    cred = get_firebase_credentials(
        settings.get('FIREBASE_CREDENTIALS_BASE64'),
        settings.get('FIREBASE_CREDENTIALS_PATH')
    )
    options = {'databaseURL': settings.get('FIREBASE_DATABASE_URL')}
    if settings.get('FIREBASE_STORAGE_BUCKET'):
        options['storageBucket'] = settings.get('FIREBASE_STORAGE_BUCKET')

    firebase_app = firebase_admin.initialize_app(cred, options)
    logger.info("Firebase initialized (database + auth + storage)")
    return firebase_app
