import importlib
import logging
import os

from logging.handlers import RotatingFileHandler

from dotenv import load_dotenv

__version__ = '0.3.0'


def load_config(config_name=None, env_dir=None):
    """Load environment files and return the selected configuration class.

    Args:
        config_name: Configuration name ('development', 'production' or
                     'testing'). Defaults to the CPJUDGE_ENV environment
                     variable or 'production'.
        env_dir: Directory searched for ``.env.<name>`` and ``.env``.
                 Defaults to the current working directory.

    Returns:
        Configuration class with values resolved from the environment.
    """
    env_dir = env_dir or os.getcwd()
    env = config_name or os.environ.get('CPJUDGE_ENV', 'production')

    env_file = os.path.join(env_dir, f'.env.{env}')
    if os.path.exists(env_file):
        load_dotenv(env_file)

    # A local .env overrides the environment-specific one
    dotenv_path = os.path.join(env_dir, '.env')
    if os.path.exists(dotenv_path):
        load_dotenv(dotenv_path, override=True)

    if config_name is None:
        config_name = os.environ.get('CPJUDGE_ENV', 'production')

    # Class attributes are read at import time, so re-evaluate them now that
    # the env files are loaded.
    from cpjudge import config as config_module
    config_module = importlib.reload(config_module)
    return config_module.config_map.get(config_name, config_module.config_map['production'])


def configure_logging(config):
    """Set the root level and add a RotatingFileHandler when LOG_FILE is set."""
    root = logging.getLogger()
    level = getattr(logging, str(getattr(config, 'LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    if root.level == logging.WARNING:
        root.setLevel(level)

    log_file = getattr(config, 'LOG_FILE', '')
    max_bytes = getattr(config, 'LOG_FILE_MAX_BYTES', 0)
    if not log_file or not max_bytes:
        return None

    log_dir = os.path.dirname(os.path.abspath(log_file))
    os.makedirs(log_dir, exist_ok=True)

    handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=getattr(config, 'LOG_FILE_BACKUP_COUNT', 3),
    )
    handler.setFormatter(logging.Formatter(
        getattr(config, 'LOG_FORMAT', '%(asctime)s [%(levelname)s] %(name)s: %(message)s')
    ))
    handler.setLevel(logging.DEBUG)
    root.addHandler(handler)
    return handler
