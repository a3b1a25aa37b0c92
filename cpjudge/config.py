import os


class BaseConfig:
    """Base configuration shared across all environments."""

    # Session storage
    SESSION_DIR = os.environ.get(
        'CPJUDGE_SESSION_DIR',
        os.path.join(os.path.expanduser('~'), '.cpjudge', 'sessions'),
    )

    # HTTP
    HTTP_TIMEOUT = float(os.environ.get('HTTP_TIMEOUT', '30'))
    HTTP_MAX_RETRIES = int(os.environ.get('HTTP_MAX_RETRIES', '3'))
    HTTP_BACKOFF_BASE = float(os.environ.get('HTTP_BACKOFF_BASE', '1.0'))
    USER_AGENT = os.environ.get(
        'USER_AGENT',
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36',
    )

    # Scraper settings (politeness delay between requests, seconds)
    SCRAPER_RATE_LIMIT = float(os.environ.get('SCRAPER_RATE_LIMIT', '1.0'))

    # Test runner
    RUNNER_PARALLELISM = int(os.environ.get('RUNNER_PARALLELISM', str(os.cpu_count() or 1)))
    RUNNER_OUTPUT_LIMIT = int(os.environ.get('RUNNER_OUTPUT_LIMIT', str(16 * 1024 * 1024)))
    RUNNER_COMPILE_TIMEOUT = float(os.environ.get('RUNNER_COMPILE_TIMEOUT', '60'))

    # Verdict polling
    POLL_INITIAL_INTERVAL = float(os.environ.get('POLL_INITIAL_INTERVAL', '1.0'))
    POLL_MAX_INTERVAL = float(os.environ.get('POLL_MAX_INTERVAL', '8.0'))
    POLL_MAX_WAIT = float(os.environ.get('POLL_MAX_WAIT', '120'))

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE', '')
    LOG_FILE_MAX_BYTES = int(os.environ.get('LOG_FILE_MAX_BYTES', str(5 * 1024 * 1024)))
    LOG_FILE_BACKUP_COUNT = int(os.environ.get('LOG_FILE_BACKUP_COUNT', '3'))
    LOG_FORMAT = os.environ.get(
        'LOG_FORMAT', '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
    )


class DevelopmentConfig(BaseConfig):
    """Development environment configuration."""

    DEBUG = True
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class ProductionConfig(BaseConfig):
    """Configuration for regular command-line use."""

    DEBUG = False


class TestingConfig(BaseConfig):
    """Testing environment configuration."""

    TESTING = True
    DEBUG = True
    SCRAPER_RATE_LIMIT = 0.0
    HTTP_BACKOFF_BASE = 0.0
    HTTP_TIMEOUT = 5.0
    POLL_INITIAL_INTERVAL = 0.01
    POLL_MAX_INTERVAL = 0.04
    POLL_MAX_WAIT = 1.0
    LOG_FILE = ''


config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
}
