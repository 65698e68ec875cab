"""
Configuration for the Check-in Kiosk

Settings are read from the environment (and a ``.env`` file, if present)
once at import time. ``create_app`` picks one of the classes below by name
and can layer a dict of overrides on top.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = 'false') -> bool:
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration class with all settings as static attributes."""

    # Core configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    DEBUG = _env_bool('FLASK_DEBUG')
    TESTING = False
    VERSION = '1.0.0'

    # Backend API
    API_BASE_URL = os.environ.get('API_BASE_URL', 'http://localhost:3005/api')
    API_ACCESS_TOKEN = os.environ.get('API_ACCESS_TOKEN')
    API_TIMEOUT_SECONDS = float(os.environ.get('API_TIMEOUT_SECONDS', 30))
    API_RETRIES = int(os.environ.get('API_RETRIES', 3))
    API_RETRY_BACKOFF_SECONDS = float(os.environ.get('API_RETRY_BACKOFF_SECONDS', 1.0))

    # Event selector
    EVENTS_LIMIT = int(os.environ.get('EVENTS_LIMIT', 50))

    # Lookup: 'disambiguate' asks the operator when several registrations
    # match, 'first' takes the first match
    MATCH_POLICY = os.environ.get('MATCH_POLICY', 'disambiguate')
    MATCH_LIMIT = int(os.environ.get('MATCH_LIMIT', 5))

    # 'inline' keeps errors in the feedback panel, 'toast' also flashes them
    ERROR_DISPLAY = os.environ.get('ERROR_DISPLAY', 'inline')

    # Data source: 'api' or 'memory'
    REPOSITORY_TYPE = os.environ.get('REPOSITORY_TYPE', 'api')
    FIXTURE_PATH = os.environ.get('FIXTURE_PATH')

    # Camera scanner
    SCANNER_ENABLED = _env_bool('SCANNER_ENABLED')
    SCANNER_CAMERA_INDEX = int(os.environ.get('SCANNER_CAMERA_INDEX', 0))
    SCANNER_DEBOUNCE_SECONDS = float(os.environ.get('SCANNER_DEBOUNCE_SECONDS', 3.0))

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_DIR = os.environ.get('LOG_DIR')


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class ProductionConfig(Config):
    DEBUG = False
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'production-secret-key-from-environment'


class TestingConfig(Config):
    TESTING = True
    DEBUG = False
    SECRET_KEY = 'testing-secret-key'
    REPOSITORY_TYPE = 'memory'
    FIXTURE_PATH = None
    API_RETRIES = 1
    API_RETRY_BACKOFF_SECONDS = 0
    SCANNER_ENABLED = False
    LOG_DIR = None


config_by_name = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig,
}
