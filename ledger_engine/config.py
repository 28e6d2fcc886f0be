import logging
import os
from functools import lru_cache

from ledger_engine.exchange_rates import MultiCurrencyAlgorithm

DEFAULT_DATABASE_URL = "sqlite:///./ledger.db"
DEFAULT_LOG_LEVEL = "INFO"


class Settings:
    def __init__(
        self,
        database_url: str,
        default_algorithm: MultiCurrencyAlgorithm,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.default_algorithm = default_algorithm
        self.log_level = log_level


def get_default_algorithm() -> MultiCurrencyAlgorithm:
    raw = os.getenv("LEDGER_DEFAULT_ALGORITHM", MultiCurrencyAlgorithm.SHOW_ALL_CURRENCIES.value)
    try:
        return MultiCurrencyAlgorithm(raw.strip().upper())
    except ValueError:
        return MultiCurrencyAlgorithm.SHOW_ALL_CURRENCIES


def get_log_level() -> str:
    raw = os.getenv("LEDGER_LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper()
    if not isinstance(logging.getLevelName(raw), int):
        return DEFAULT_LOG_LEVEL
    return raw


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("LEDGER_DATABASE_URL", DEFAULT_DATABASE_URL),
        default_algorithm=get_default_algorithm(),
        log_level=get_log_level(),
    )


def configure_logging() -> None:
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
