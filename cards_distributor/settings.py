"""
Configuration for Poker Cards Distributor.

Values come from the process environment, falling back to a .env file
(loaded with python-dotenv) and then to the defaults below.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from dotenv import dotenv_values

from cards_distributor.errors import ConfigError
from cards_distributor.version import get_version_info

DEFAULTS = {
    'LCD_URL': 'https://pulsar.lcd.secretnodes.com',
    'CHAIN_ID': 'pulsar-3',
    'CONTRACT_INFO_PATH': 'contractInfo.json',
    'QUERY_TIMEOUT': '10',
    'INCLUSION_TIMEOUT': '60',
    'POLL_INTERVAL': '2',
    'GAS_LIMIT': '50000',
    'HAND_LOG_DB': 'hand_log.db',
    'PERMIT_NAME': 'query_cards',
}


@dataclass(frozen=True)
class Settings:
    lcd_url: str
    chain_id: str
    contract_info_path: str
    query_timeout: float
    inclusion_timeout: float
    poll_interval: float
    gas_limit: int
    hand_log_db: str
    permit_name: str


def load_env(env_file: str = ".env") -> Dict[str, str]:
    """Merge defaults, the .env file and the real environment (in that order)."""
    env = dict(DEFAULTS)
    for key, value in dotenv_values(env_file).items():
        if value is not None:
            env[key] = value
    # overlay with REAL env
    for key in DEFAULTS:
        if os.getenv(key) is not None:
            env[key] = os.getenv(key)
    return env


def _positive(env: Dict[str, str], key: str, cast) -> Any:
    raw = env[key]
    try:
        value = cast(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{key} must be positive, got {raw!r}")
    return value


def get_settings(env_file: str = ".env", overrides: Optional[Dict[str, str]] = None) -> Settings:
    env = load_env(env_file)
    if overrides:
        env.update(overrides)
    return Settings(
        lcd_url=env['LCD_URL'].rstrip('/'),
        chain_id=env['CHAIN_ID'],
        contract_info_path=env['CONTRACT_INFO_PATH'],
        query_timeout=_positive(env, 'QUERY_TIMEOUT', float),
        inclusion_timeout=_positive(env, 'INCLUSION_TIMEOUT', float),
        poll_interval=_positive(env, 'POLL_INTERVAL', float),
        gas_limit=_positive(env, 'GAS_LIMIT', int),
        hand_log_db=env['HAND_LOG_DB'],
        permit_name=env['PERMIT_NAME'],
    )


def describe(settings: Settings) -> Dict[str, Any]:
    """Settings plus version info, for the CLI's startup banner."""
    return {
        'lcd_url': settings.lcd_url,
        'chain_id': settings.chain_id,
        'contract_info_path': settings.contract_info_path,
        **get_version_info(),
    }
