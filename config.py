"""
Coin Tracker — Configuration
All tunable parameters in one place.
"""

import os
from dataclasses import dataclass, field
from typing import List


DEFAULT_COINS = [
    "bitcoin", "ethereum", "ethereum-classic", "ripple", "cardano",
    "solana", "dogecoin", "polkadot", "shiba-inu", "polygon",
    "litecoin", "tron", "stellar", "vechain", "monero",
    "eos", "theta", "axie-infinity", "crypto-com-chain", "uniswap",
]


@dataclass
class RetryPolicy:
    max_attempts: int = 2
    delay_sec: float = 3.0              # Fixed delay between attempts


@dataclass
class UpstreamConfig:
    base_url: str = "https://api.coingecko.com/api/v3"
    vs_currency: str = "usd"
    current_timeout_sec: float = 15.0
    history_timeout_sec: float = 30.0
    symbol_timeout_sec: float = 10.0
    current_retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(2, 3.0))
    history_retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(3, 25.0))


@dataclass
class IngestionConfig:
    batch_size: int = 5                 # Ids per /coins/markets call
    batch_pause_sec: float = 30.0       # Between batches, not after the last
    backfill_pause_sec: float = 25.0    # Between coins during a backfill
    backfill_threshold: int = 100       # Backfill when fewer records stored
    history_days: int = 90
    default_coins: List[str] = field(default_factory=lambda: list(DEFAULT_COINS))


@dataclass
class ScheduleConfig:
    ingest_interval_sec: float = 60.0
    analysis_interval_sec: float = 120.0
    shutdown_grace_sec: float = 30.0
    auto_start: bool = False


@dataclass
class StorageConfig:
    db_path: str = "./data/tracker.db"
    coins_file: str = "coins_to_track.json"


@dataclass
class ApiConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class TrackerConfig:
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "TrackerConfig":
        """Load config with environment variable overrides."""
        config = cls()
        config.upstream.base_url = os.getenv("COINGECKO_BASE_URL", config.upstream.base_url)
        config.storage.db_path = os.getenv("DB_PATH", config.storage.db_path)
        config.storage.coins_file = os.getenv("COINS_FILE", config.storage.coins_file)
        config.schedule.ingest_interval_sec = float(
            os.getenv("INGEST_INTERVAL_SEC", config.schedule.ingest_interval_sec)
        )
        config.schedule.analysis_interval_sec = float(
            os.getenv("ANALYSIS_INTERVAL_SEC", config.schedule.analysis_interval_sec)
        )
        config.schedule.auto_start = os.getenv("AUTO_START", "false").lower() == "true"
        config.ingestion.history_days = int(os.getenv("HISTORY_DAYS", config.ingestion.history_days))
        config.api.enabled = os.getenv("API_ENABLED", "true").lower() == "true"
        config.api.port = int(os.getenv("API_PORT", config.api.port))
        config.log_level = os.getenv("LOG_LEVEL", "INFO")
        return config
