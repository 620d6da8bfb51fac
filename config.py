"""
Application Configuration
"""
import os

class Config:
    """Base configuration"""
    # Secret keys
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
    JWT_SECRET = os.environ.get('JWT_SECRET', 'jwt-secret-change-in-production')
    JWT_ALGORITHM = 'HS256'
    JWT_ACCESS_TOKEN_EXPIRES = 60 * 24  # minutes

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        'DATABASE_URI',
        'sqlite:///learnity.db'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300
    }

    # Security
    SESSION_COOKIE_SECURE = False  # Set True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # CORS
    CORS_ORIGINS = [
        'http://localhost:3000',
        'http://localhost:5000',
        'http://127.0.0.1:3000',
        'http://127.0.0.1:5000'
    ]

    # Rate limiting
    RATELIMIT_ENABLED = True
    RATELIMIT_DEFAULT = "2000 per day"
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI', 'memory://')
    RATELIMIT_LOGIN = "10 per minute"
    RATELIMIT_HEARTBEAT = "120 per minute"
    RATELIMIT_MESSAGES = "30 per minute"

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s'

    # Mail
    MAIL_SERVER = os.environ.get('MAIL_SERVER', 'smtp.gmail.com')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', 587))
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME', '')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD', '')
    MAIL_FROM = os.environ.get('MAIL_FROM', 'noreply@learnity.app')
    MAIL_FROM_NAME = os.environ.get('MAIL_FROM_NAME', 'Learnity')
    FRONTEND_URL = os.environ.get('FRONTEND_URL', 'http://localhost:3000')

    # Default admin (created by `flask init-db`)
    DEFAULT_ADMIN_EMAIL = os.environ.get('DEFAULT_ADMIN_EMAIL', 'admin@learnity.app')
    DEFAULT_ADMIN_PASSWORD = os.environ.get('DEFAULT_ADMIN_PASSWORD', 'password123')

    # Watch progress
    PROGRESS_COMPLETION_THRESHOLD = 0.9
    PROGRESS_SECTION_UNLOCK_THRESHOLD = 0.8
    PROGRESS_DEBOUNCE_SECONDS = 5
    PROGRESS_DEBOUNCE_INTERVAL = 30
    PROGRESS_REPLAY_MAX_EVENTS = 500
    PROGRESS_REPLAY_MAX_AGE_DAYS = 14
    PROGRESS_CLOCK_SKEW_SECONDS = 120

    # Teacher applications
    TEACHER_REAPPLY_DAYS = 30
    TEACHER_REVIEWS_PER_DAY = 10

    # Messaging
    MESSAGE_MAX_LENGTH = 2000


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    ENV = 'development'

    # Use simpler secret for development
    SECRET_KEY = 'dev-secret-key-do-not-use-in-production'
    JWT_SECRET = 'dev-jwt-key-do-not-use-in-production'

    # More permissive CORS
    CORS_ORIGINS = ['*']

    LOG_LEVEL = 'DEBUG'


class TestingConfig(Config):
    """Test configuration"""
    TESTING = True
    ENV = 'testing'

    SECRET_KEY = 'test-secret-key'
    JWT_SECRET = 'test-jwt-secret'

    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}

    RATELIMIT_ENABLED = False
    LOG_LEVEL = 'WARNING'

    # Never talk to a real SMTP server from tests
    MAIL_USERNAME = ''
    MAIL_PASSWORD = ''


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    ENV = 'production'

    # Enforce security
    SESSION_COOKIE_SECURE = True

    # Restrict CORS
    CORS_ORIGINS = [
        'https://learnity.app',
        'https://www.learnity.app'
    ]

    RATELIMIT_DEFAULT = "1000 per day"


# Configuration dictionary
config_dict = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
