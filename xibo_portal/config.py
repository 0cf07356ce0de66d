"""
Xibo Portal Configuration Module

Configuration settings for the upstream CMS connection, the layout engine
and the server. All sensitive values are loaded from environment variables.

An optional YAML settings file (path in XIBO_PORTAL_SETTINGS) is layered
on top of the class defaults. Nested sections are flattened into upper-case
keys, so ``scene: {fill_ratio: 0.8}`` sets SCENE_FILL_RATIO.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


class Config:
    """Base configuration class with default settings."""

    # Flask Settings
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', 'dev-jwt-secret-change-in-production')
    JWT_ACCESS_TOKEN_EXPIRES = _env_int('JWT_ACCESS_TOKEN_EXPIRES', 3600)

    # Base Directory
    BASE_DIR = Path(__file__).parent.resolve()

    # Upstream Xibo CMS
    XIBO_API_URL = os.environ.get('XIBO_API_URL', '')
    XIBO_CLIENT_ID = os.environ.get('XIBO_CLIENT_ID')
    XIBO_CLIENT_SECRET = os.environ.get('XIBO_CLIENT_SECRET')
    XIBO_REQUEST_TIMEOUT = _env_int('XIBO_REQUEST_TIMEOUT', 30)
    XIBO_MAX_RETRIES = _env_int('XIBO_MAX_RETRIES', 3)

    # Collection paging
    COLLECTION_PAGE_SIZE = _env_int('COLLECTION_PAGE_SIZE', 100)
    COLLECTION_MAX_PAGES = _env_int('COLLECTION_MAX_PAGES', 50)

    # Scene Builder
    SCENE_FILL_RATIO = _env_float('SCENE_FILL_RATIO', 0.9)
    SCENE_IFRAME_KINDS = os.environ.get('SCENE_IFRAME_KINDS', 'dataset,embedded,ticker')
    DEFAULT_VIEWPORT_WIDTH = _env_int('DEFAULT_VIEWPORT_WIDTH', 1920)
    DEFAULT_VIEWPORT_HEIGHT = _env_int('DEFAULT_VIEWPORT_HEIGHT', 1080)

    # Sub-Resource Resolver
    RESOLVER_MAX_WORKERS = _env_int('RESOLVER_MAX_WORKERS', 8)
    RESOLVER_TIMEOUT = _env_float('RESOLVER_TIMEOUT', 10.0)

    # Edit Session
    CHECKOUT_SEARCH_ATTEMPTS = _env_int('CHECKOUT_SEARCH_ATTEMPTS', 3)
    CHECKOUT_SEARCH_BACKOFF = _env_float('CHECKOUT_SEARCH_BACKOFF', 0.5)

    # Server Settings
    PORT = _env_int('XIBO_PORTAL_PORT', 5004)
    HOST = os.environ.get('XIBO_PORTAL_HOST', '0.0.0.0')

    # Optional YAML overlay
    SETTINGS_PATH = os.environ.get('XIBO_PORTAL_SETTINGS')

    @classmethod
    def init_app(cls, app):
        """Initialize application with this configuration."""
        settings_path = app.config.get('SETTINGS_PATH')
        if settings_path:
            app.config.update(load_settings_file(settings_path))


class DevelopmentConfig(Config):
    """Development configuration with debug enabled."""

    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration pointing at a dummy upstream."""

    DEBUG = True
    TESTING = True
    JWT_SECRET_KEY = 'testing-jwt-secret-key-of-sufficient-length'
    XIBO_API_URL = 'http://xibo.test/api'
    XIBO_CLIENT_ID = 'test-client'
    XIBO_CLIENT_SECRET = 'test-secret'
    RESOLVER_MAX_WORKERS = 2
    RESOLVER_TIMEOUT = 5.0
    CHECKOUT_SEARCH_BACKOFF = 0.0
    SETTINGS_PATH = None


class ProductionConfig(Config):
    """Production configuration with strict security settings."""

    DEBUG = False
    TESTING = False

    @classmethod
    def init_app(cls, app):
        """Production-specific initialization."""
        Config.init_app(app)

        # Verify required environment variables are set
        required_vars = [
            'SECRET_KEY',
            'JWT_SECRET_KEY',
            'XIBO_API_URL',
            'XIBO_CLIENT_ID',
            'XIBO_CLIENT_SECRET',
        ]
        missing = [var for var in required_vars if not os.environ.get(var)]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")


def _flatten(settings: Dict[str, Any], prefix: str = '') -> Dict[str, Any]:
    flat = {}
    for key, value in settings.items():
        name = f"{prefix}_{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(_flatten(value, name))
        else:
            flat[name.upper()] = value
    return flat


def load_settings_file(path: str) -> Dict[str, Any]:
    """
    Load a YAML settings file into flat upper-case config keys.

    Args:
        path: Path to the YAML file

    Returns:
        Dictionary of config keys

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file does not contain a mapping
    """
    settings_path = Path(path)
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with open(settings_path, 'r') as f:
        settings = yaml.safe_load(f) or {}

    if not isinstance(settings, dict):
        raise ValueError(f"Settings file must contain a mapping: {settings_path}")

    return _flatten(settings)


# Configuration mapping by environment name
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig,
}


def get_config(env_name: Optional[str] = None):
    """Get configuration class by environment name.

    Args:
        env_name: Environment name ('development', 'testing', 'production').
                  If None, reads from FLASK_ENV environment variable.

    Returns:
        Configuration class for the specified environment.
    """
    if env_name is None:
        env_name = os.environ.get('FLASK_ENV', 'development')
    return config.get(env_name, config['default'])
