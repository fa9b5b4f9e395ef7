"""
Application settings and configuration
"""
import os
from datetime import timedelta
from dotenv import load_dotenv

_is_production = os.getenv('FLASK_ENV', 'development') == 'production'
load_dotenv(override=(not _is_production))


def _env_int(name, default):
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_bool(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {'1', 'true', 'yes', 'on'}


class Config:
    """Base configuration"""
    SECRET_KEY = os.getenv('SECRET_KEY', 'loyalty-qr-secret-key-change-me')
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY', 'loyalty-qr-jwt-secret-key-change-me')
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=8)  # staff shift

    # CORS Settings
    CORS_ORIGINS = os.getenv('CORS_ORIGINS', '*')

    # Application Settings
    APP_NAME = 'Loyalty QR API'
    APP_VERSION = '1.0.0'
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    DEBUG = False
    TESTING = False

    # Customer recognition (in-memory stores)
    QR_IDENTIFICATION_TTL_SECONDS = _env_int('QR_IDENTIFICATION_TTL_SECONDS', 15 * 60)
    QR_COOLDOWN_SECONDS = _env_int('QR_COOLDOWN_SECONDS', 15 * 60)
    QR_REGISTRATION_LIMIT = _env_int('QR_REGISTRATION_LIMIT', 10)
    QR_REGISTRATION_WINDOW_SECONDS = _env_int('QR_REGISTRATION_WINDOW_SECONDS', 60 * 60)
    QR_SWEEP_INTERVAL_SECONDS = _env_int('QR_SWEEP_INTERVAL_SECONDS', 2 * 60)
    QR_SWEEPER_ENABLED = _env_bool('QR_SWEEPER_ENABLED', True)
    PIN_TOKEN_TTL_SECONDS = _env_int('PIN_TOKEN_TTL_SECONDS', 5 * 60)
    VERIFY_TOKEN_TTL_SECONDS = _env_int('VERIFY_TOKEN_TTL_SECONDS', 30 * 60)

    # Login lockout (customers and staff)
    LOGIN_MAX_FAILED_ATTEMPTS = _env_int('LOGIN_MAX_FAILED_ATTEMPTS', 5)
    LOGIN_LOCKOUT_SECONDS = _env_int('LOGIN_LOCKOUT_SECONDS', 15 * 60)

    # Reverse proxies trusted to set X-Forwarded-For; 0 means none
    PROXY_FIX_X_FOR = _env_int('PROXY_FIX_X_FOR', 0)

    # Points
    CLIENT_SESSION_DAYS = _env_int('CLIENT_SESSION_DAYS', 30)
    CASHIER_MAX_CREDIT_AMOUNT = _env_int('CASHIER_MAX_CREDIT_AMOUNT', 200)
    DEFAULT_COUNTRY_CODE = os.getenv('DEFAULT_COUNTRY_CODE', '32')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    JWT_SECRET_KEY = 'testing-jwt-secret-key-with-enough-bytes'
    QR_SWEEPER_ENABLED = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config():
    """Get configuration based on environment"""
    env = os.getenv('FLASK_ENV', 'development')
    return config.get(env, config['default'])
