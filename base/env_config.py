"""
Environment configuration utility for the Wozap connections project.
Import this module anywhere in the Django project to access environment variables.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Evolution API (WhatsApp gateway) configuration
EVOLUTION_API_KEY = os.getenv('EVOLUTION_API_KEY', '')
EVOLUTION_HOST_URL = os.getenv('EVOLUTION_HOST_URL', 'http://localhost:8080').rstrip('/')

# Django configuration
SECRET_KEY = os.getenv('SECRET_KEY')
DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
SITE_URL = os.getenv('SITE_URL', 'http://localhost:8000').rstrip('/')

GEMINI_API_KEY = os.getenv('GEMINI_API_KEY')


def get_env_variable(var_name, default=None):
    """
    Get an environment variable with optional default value.

    Args:
        var_name (str): Name of the environment variable
        default: Default value if variable is not found

    Returns:
        str: Environment variable value or default
    """
    return os.getenv(var_name, default)


def get_env_int(var_name, default):
    """Integer variant of get_env_variable; falls back to default on bad input."""
    value = os.getenv(var_name)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        return default


def get_env_float(var_name, default):
    value = os.getenv(var_name)
    if value is None or value.strip() == '':
        return default
    try:
        return float(value)
    except ValueError:
        return default


def get_required_env_variable(var_name):
    """
    Get a required environment variable. Raises error if not found.

    Args:
        var_name (str): Name of the environment variable

    Returns:
        str: Environment variable value

    Raises:
        ValueError: If environment variable is not found
    """
    value = os.getenv(var_name)
    if value is None:
        raise ValueError(f"Required environment variable '{var_name}' is not set")
    return value
