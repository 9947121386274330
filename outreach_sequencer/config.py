import os
from dotenv import load_dotenv

load_dotenv()


def _optional_float(name):
    value = os.environ.get(name)
    if value in (None, ''):
        return None
    return float(value)


class Config:
    """Base configuration class."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    # Shared secret of the external auth provider that issues bearer tokens
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or 'jwt-secret-key-change-in-production'
    AUTH_REQUIRED = os.environ.get('AUTH_REQUIRED', 'false').lower() == 'true'

    # Message generation
    OPENAI_API_KEY = os.environ.get('OPENAI_API_KEY')
    OPENAI_MODEL = os.environ.get('OPENAI_MODEL', 'gpt-4o-mini')
    MESSAGE_GENERATOR = os.environ.get('MESSAGE_GENERATOR') or ('openai' if OPENAI_API_KEY else 'template')
    GENERATION_TIMEOUT_SECONDS = float(os.environ.get('GENERATION_TIMEOUT_SECONDS', '30'))

    # Send channel
    SEND_CHANNEL = os.environ.get('SEND_CHANNEL', 'simulated')  # simulated, email
    RESEND_API_KEY = os.environ.get('RESEND_API_KEY')
    OUTREACH_EMAIL_FROM = os.environ.get('OUTREACH_EMAIL_FROM', 'outreach@example.com')

    # Retry and gating policy
    MAX_STEP_RETRIES = int(os.environ.get('MAX_STEP_RETRIES', '5'))
    RETRY_BACKOFF_BASE_SECONDS = int(os.environ.get('RETRY_BACKOFF_BASE_SECONDS', '300'))  # 5 minutes
    RETRY_BACKOFF_MAX_SECONDS = int(os.environ.get('RETRY_BACKOFF_MAX_SECONDS', '21600'))  # 6 hours
    CONDITION_RECHECK_HOURS = float(os.environ.get('CONDITION_RECHECK_HOURS', '12'))
    CONDITION_TIMEOUT_DAYS = _optional_float('CONDITION_TIMEOUT_DAYS')  # None keeps gated records waiting
    ENGAGEMENT_HALF_LIFE_DAYS = float(os.environ.get('ENGAGEMENT_HALF_LIFE_DAYS', '14'))
    EXECUTION_LEASE_SECONDS = int(os.environ.get('EXECUTION_LEASE_SECONDS', '300'))

    # Scheduler
    SCHEDULER_BATCH_SIZE = int(os.environ.get('SCHEDULER_BATCH_SIZE', '100'))
    SCHEDULER_WORKERS = int(os.environ.get('SCHEDULER_WORKERS', '1'))
    SCHEDULER_INTERVAL_SECONDS = int(os.environ.get('SCHEDULER_INTERVAL_SECONDS', '300'))
    START_SCHEDULER = os.environ.get('START_SCHEDULER', 'false').lower() == 'true'

    # Operator notifications
    NOTIFICATIONS_ENABLED = os.environ.get('NOTIFICATIONS_ENABLED', 'false').lower() == 'true'
    NOTIFY_EMAIL_FROM = os.environ.get('NOTIFY_EMAIL_FROM', 'notifications@example.com')
    NOTIFY_EMAIL_TO = os.environ.get('NOTIFY_EMAIL_TO', '')

    # CORS configuration
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

    # Logging configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///outreach_sequencer.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = True
    TESTING = False


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    SECRET_KEY = os.environ.get('SECRET_KEY')
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY')

    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '').split(',')

    @classmethod
    def validate_config(cls):
        """Validate production configuration."""
        if not cls.SQLALCHEMY_DATABASE_URI:
            raise ValueError("DATABASE_URL environment variable is required for production")

        if not cls.SECRET_KEY:
            raise ValueError("SECRET_KEY environment variable is required for production")

        if not cls.JWT_SECRET_KEY:
            raise ValueError("JWT_SECRET_KEY environment variable is required for production")

        if cls.SEND_CHANNEL == 'email' and not cls.RESEND_API_KEY:
            raise ValueError("RESEND_API_KEY environment variable is required for the email channel")

        if not cls.CORS_ORIGINS or cls.CORS_ORIGINS == ['']:
            raise ValueError("CORS_ORIGINS environment variable is required for production")


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AUTH_REQUIRED = False
    MESSAGE_GENERATOR = 'template'
    SEND_CHANNEL = 'simulated'
    NOTIFICATIONS_ENABLED = False
    START_SCHEDULER = False
    SCHEDULER_WORKERS = 1
    CONDITION_TIMEOUT_DAYS = None


# Configuration mapping
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
