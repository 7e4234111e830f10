"""
Config package for the market scanner.

Provides centralized configuration loading from root .env file.
"""

from config.settings import (
    load_config,
    get_coingecko_key,
    get_discord_webhook_url,
    is_config_loaded,
)

__all__ = [
    'load_config',
    'get_coingecko_key',
    'get_discord_webhook_url',
    'is_config_loaded',
]
