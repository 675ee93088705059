# Campus Events Configuration

import os
from datetime import timedelta
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.absolute()


def _env_flag(name, default='False'):
    return os.environ.get(name, default).lower() in ['true', 'on', '1']


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'campus-events-secret-key-2025'

    # Storage Configuration
    DATABASE_PATH = os.environ.get('DATABASE_PATH') or str(BASE_DIR / 'database' / 'campus_events.db')
    LOCAL_CACHE_PATH = os.environ.get('LOCAL_CACHE_PATH') or str(BASE_DIR / 'database' / 'local_cache.json')
    SUBSCRIPTION_POLL_INTERVAL = 0.5  # seconds

    # Session Configuration
    PERMANENT_SESSION_LIFETIME = timedelta(hours=8)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Security Configuration
    PASSWORD_MIN_LENGTH = 6

    # Demo accounts (exact email and password required)
    DEMO_MODE = _env_flag('DEMO_MODE')
    DEMO_ACCOUNTS = {
        'student@university.edu': {
            'uid': 'demo_student',
            'password': 'demo123',
            'name': 'Demo Student',
            'role': 'student',
            'studentId': 'STU0001'
        },
        'organizer@university.edu': {
            'uid': 'demo_organizer',
            'password': 'demo123',
            'name': 'Demo Organizer',
            'role': 'organizer',
            'organizationName': 'Student Council'
        }
    }

    # Event Configuration
    EVENT_EDIT_POLICY = os.environ.get('EVENT_EDIT_POLICY') or 'owner'  # 'owner' or 'any_organizer'
    EVENT_CATEGORIES = ['Academic', 'Sports', 'Cultural', 'Social', 'Workshop', 'Study Group']
    MAX_TAGS = 10
    DEFAULT_END_TIME = '23:59'
    RECOMMENDATION_LIMIT = 3

    # Expiration Sweep Configuration
    SWEEP_ENABLED = _env_flag('SWEEP_ENABLED', 'True')
    SWEEP_INTERVAL_SECONDS = 3600
    ARCHIVE_RETENTION_DAYS = 365

    # QR Code Configuration
    QR_CODE_SIZE = 10
    QR_CODE_BORDER = 4
    QR_CODE_FILL_COLOR = 'black'
    QR_CODE_BACK_COLOR = 'white'

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FILE = str(BASE_DIR / 'logs' / 'campus_events.log')
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    # Development Configuration
    DEBUG = _env_flag('DEBUG')
    TESTING = False

    @classmethod
    def init_app(cls, app):
        """Initialize application configuration"""
        # Create necessary directories
        for key in ('DATABASE_PATH', 'LOCAL_CACHE_PATH', 'LOG_FILE'):
            value = app.config.get(key)
            if value and value != ':memory:':
                Path(value).parent.mkdir(parents=True, exist_ok=True)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False

    DATABASE_PATH = os.environ.get('DATABASE_PATH') or str(BASE_DIR / 'database' / 'campus_events_dev.db')

    # Demo accounts enabled for development
    DEMO_MODE = _env_flag('DEMO_MODE', 'True')

    # More verbose logging
    LOG_LEVEL = 'DEBUG'


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    DATABASE_PATH = str(BASE_DIR / 'database' / 'campus_events_test.db')
    LOCAL_CACHE_PATH = None

    # No background threads while testing
    SWEEP_ENABLED = False
    SUBSCRIPTION_POLL_INTERVAL = 0.05

    DEMO_MODE = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    # Enhanced security for production
    SESSION_COOKIE_SECURE = True  # Requires HTTPS

    # Production database path
    DATABASE_PATH = os.environ.get('DATABASE_PATH') or str(BASE_DIR / 'database' / 'campus_events_prod.db')

    # Production logging
    LOG_LEVEL = 'WARNING'

    @classmethod
    def init_app(cls, app):
        super().init_app(app)

        # Production-specific initialization
        import logging
        from logging.handlers import RotatingFileHandler

        # Setup file logging
        if not app.debug:
            file_handler = RotatingFileHandler(
                app.config['LOG_FILE'],
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
            ))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('Campus Events startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


# Environment-specific configurations
def get_config():
    """Get configuration based on environment variable"""
    return config.get(os.environ.get('FLASK_ENV', 'default'), DevelopmentConfig)


# Validation functions
def validate_config(settings):
    """Validate configuration settings"""
    errors = []

    if not settings.get('SECRET_KEY'):
        errors.append("SECRET_KEY is required")

    if not settings.get('DATABASE_PATH'):
        errors.append("DATABASE_PATH is required")

    if settings.get('EVENT_EDIT_POLICY') not in ('owner', 'any_organizer'):
        errors.append(f"EVENT_EDIT_POLICY must be 'owner' or 'any_organizer', got {settings.get('EVENT_EDIT_POLICY')!r}")

    if int(settings.get('SWEEP_INTERVAL_SECONDS') or 0) <= 0:
        errors.append("SWEEP_INTERVAL_SECONDS must be positive")

    if not settings.get('EVENT_CATEGORIES'):
        errors.append("EVENT_CATEGORIES must not be empty")

    if settings.get('DEMO_MODE'):
        for email, account in (settings.get('DEMO_ACCOUNTS') or {}).items():
            if '-' in account.get('uid', ''):
                errors.append(f"Demo account {email} uid must not contain hyphens")

    return errors


# Initialize configuration
def init_config(app, config_name=None, overrides=None):
    """Initialize application with configuration"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')

    config_class = config.get(config_name, DevelopmentConfig)
    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)

    config_class.init_app(app)

    # Validate configuration
    errors = validate_config(app.config)
    if errors:
        for error in errors:
            app.logger.error(f"Configuration error: {error}")
        raise RuntimeError("Configuration validation failed")

    return config_class
