"""
Configuration file for the Respon Warga coordination backend.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default):
    return os.getenv(name, default).lower() == 'true'


class Config:
    """Base configuration"""
    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = _env_bool('DEBUG', 'True')
    TESTING = False

    # 10 MB max request size (report photos and crowdsourced media)
    MAX_CONTENT_LENGTH = 10 * 1024 * 1024
    MAX_UPLOAD_MB = int(os.getenv('MAX_UPLOAD_MB', '10'))

    # Firebase (Auth, Realtime Database, Cloud Storage)
    INIT_FIREBASE = True
    FIREBASE_CREDENTIALS_PATH = os.getenv('FIREBASE_CREDENTIALS_PATH')
    FIREBASE_CREDENTIALS_BASE64 = os.getenv('FIREBASE_CREDENTIALS_BASE64')
    FIREBASE_DATABASE_URL = os.getenv('FIREBASE_DATABASE_URL')
    FIREBASE_STORAGE_BUCKET = os.getenv('FIREBASE_STORAGE_BUCKET')

    # CORS
    FRONTEND_URL = os.getenv('FRONTEND_URL')
    DEV_MOBILE_URL = os.getenv('DEV_MOBILE_URL', '')
    CORS_ORIGINS = [
        'http://localhost:3000',
        'http://127.0.0.1:3000',
        'http://localhost:3001',
        'http://127.0.0.1:3001'
    ]

    # Rate limiting (read by Flask-Limiter)
    RATELIMIT_ENABLED = _env_bool('RATELIMIT_ENABLED', 'True')
    RATELIMIT_STORAGE_URI = os.getenv('REDIS_URL', 'memory://')
    RATELIMIT_HEADERS_ENABLED = True

    # Operations
    DEFAULT_OPERATION_RADIUS_KM = float(os.getenv('DEFAULT_OPERATION_RADIUS_KM', '10'))

    # Reverse geocoding for citizen reports without an address
    GEOCODING_ENABLED = _env_bool('GEOCODING_ENABLED', 'True')
    NOMINATIM_URL = os.getenv('NOMINATIM_URL', 'https://nominatim.openstreetmap.org/reverse')

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    APP_VERSION = os.getenv('APP_VERSION', '1.0.0')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Test configuration: no Firebase app, no rate limits, no outbound geocoding"""
    TESTING = True
    DEBUG = False
    INIT_FIREBASE = False
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = 'memory://'
    GEOCODING_ENABLED = False


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_cors_origins(config_name, settings):
    """
    Resolve allowed CORS origins for the active environment.

    Production only allows the configured frontend; development allows local
    origins plus an optional device URL for testing on phones.
    """
    if config_name == 'production':
        if not settings.FRONTEND_URL:
            raise ValueError("FRONTEND_URL must be set in production environment")
        return [settings.FRONTEND_URL]

    origins = list(settings.CORS_ORIGINS)
    if settings.DEV_MOBILE_URL:
        origins.append(settings.DEV_MOBILE_URL)
    return [origin for origin in origins if origin]
