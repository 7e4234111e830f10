"""
Centralized configuration loading for the market scanner.

Single source of truth for credentials read from the project root .env
file. The file is optional: cloud deployments set variables directly.

Usage:
    from config.settings import load_config, get_coingecko_key

    # At app startup (call once)
    load_config()

    key = get_coingecko_key()
"""

import os
from pathlib import Path
from typing import Optional

# Flag to track if config has been loaded
_CONFIG_LOADED = False


def load_config(force_reload: bool = False, env_path: Optional[Path] = None) -> None:
    """
    Load environment variables from the project root .env file.

    Variables already present in the process environment take precedence.

    Args:
        force_reload: If True, reload even if already loaded
        env_path: Alternative .env location (defaults to project root)
    """
    global _CONFIG_LOADED

    if _CONFIG_LOADED and not force_reload:
        return

    # Import here to avoid circular imports
    from dotenv import load_dotenv

    if env_path is None:
        project_root = Path(__file__).parent.parent
        env_path = project_root / '.env'

    # Only load .env file if it exists (local development)
    if Path(env_path).exists():
        load_dotenv(env_path, override=False)

    _CONFIG_LOADED = True


def get_coingecko_key() -> Optional[str]:
    """Get CoinGecko API key (optional, raises the public rate limit)."""
    load_config()
    return os.getenv('COINGECKO_API_KEY') or None


def get_discord_webhook_url() -> Optional[str]:
    """Get the Discord webhook for scanner alerts (optional)."""
    load_config()
    return (
        os.getenv('SCANNER_DISCORD_WEBHOOK_URL')
        or os.getenv('DISCORD_WEBHOOK_URL')
        or None
    )


def is_config_loaded() -> bool:
    """Check if configuration has been loaded."""
    return _CONFIG_LOADED
