"""Configuration settings for the learning engine."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


# Define data directories from environment variables
DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))
BACKUP_DIR = DATA_DIR / "backup"

# Storage keys
USER_SETTINGS = "user_settings"
SITE_SETTINGS = "site_settings"
WORD_PROGRESS = "word_progress"
DAILY_USAGE = "daily_usage"
TRANSLATION_CACHE = "translation_cache"
SYNC_KEYS = frozenset({USER_SETTINGS, SITE_SETTINGS})

# Storage namespaces
SYNC_NAMESPACE = "sync"
LOCAL_NAMESPACE = "local"

# Learning settings
COMMON_LEARN_WORDS = ["house", "water", "food", "time", "work", "people", "world"]
STOP_WORDS = ["the", "and", "for", "are", "but", "not", "you", "all", "that", "this", "with", "from"]

DEFAULT_USER_SETTINGS = {
    "enabled": True,
    "targetLanguage": "spanish",
    "wordsPerPage": 6,
    "difficulty": "intermediate",
    "showPronunciation": True,
}


def _float_list(value: str) -> list[float]:
    """Parse a comma separated list of floats."""
    return [float(item) for item in value.split(",") if item.strip()]


def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None


def ensure_directories() -> None:
    """Ensure all required directories exist."""
    directories = [
        DATA_DIR,
        BACKUP_DIR,
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)


@dataclass
class PathSettings:
    """Path configuration settings."""
    data_dir: Path = DATA_DIR
    backup_dir: Path = BACKUP_DIR
    backup_file: Path = Path(os.getenv("BACKUP_FILE", str(BACKUP_DIR / "failed_writes.json")))


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///fluentcore.db")
    echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


@dataclass
class StorageSettings:
    """Durable storage settings."""
    batch_delay: float = float(os.getenv("STORAGE_BATCH_DELAY", "0.1"))  # seconds
    max_retries: int = int(os.getenv("STORAGE_MAX_RETRIES", "3"))
    retry_delays: list[float] = field(
        default_factory=lambda: _float_list(os.getenv("STORAGE_RETRY_DELAYS", "1,2,4"))
    )
    sync_quota_bytes: int = int(os.getenv("STORAGE_SYNC_QUOTA_BYTES", "102400"))  # 100KB
    local_quota_bytes: int = int(os.getenv("STORAGE_LOCAL_QUOTA_BYTES", "10485760"))  # 10MB


@dataclass
class LearningSettings:
    """Spaced repetition and word selection settings."""
    default_ease_factor: float = float(os.getenv("DEFAULT_EASE_FACTOR", "2.5"))
    min_ease_factor: float = float(os.getenv("MIN_EASE_FACTOR", "1.3"))
    max_ease_factor: Optional[float] = field(default_factory=lambda: _optional_float("MAX_EASE_FACTOR"))
    pass_threshold: int = int(os.getenv("QUALITY_PASS_THRESHOLD", "3"))
    words_per_page: int = int(os.getenv("WORDS_PER_PAGE", "6"))
    max_review_words_per_session: int = int(os.getenv("MAX_REVIEW_WORDS_PER_SESSION", "10"))
    min_word_length: int = int(os.getenv("MIN_WORD_LENGTH", "4"))
    mastered_threshold: int = int(os.getenv("MASTERED_THRESHOLD", "80"))
    stale_after_days: int = int(os.getenv("STALE_AFTER_DAYS", "90"))
    common_words: list[str] = field(default_factory=lambda: COMMON_LEARN_WORDS)
    stop_words: list[str] = field(default_factory=lambda: STOP_WORDS)


@dataclass
class QuotaSettings:
    """Daily usage limits for the free tier."""
    daily_words: int = int(os.getenv("DAILY_WORDS", "100"))
    daily_explanations: int = int(os.getenv("DAILY_EXPLANATIONS", "100"))


@dataclass
class CacheSettings:
    """Translation cache settings."""
    max_entries: int = int(os.getenv("TRANSLATION_CACHE_MAX_ENTRIES", "10000"))
    trim_to: int = int(os.getenv("TRANSLATION_CACHE_TRIM_TO", "9000"))
    expiry_days: int = int(os.getenv("TRANSLATION_CACHE_EXPIRY_DAYS", "30"))


@dataclass
class MonitoringSettings:
    """Prometheus metrics settings."""
    port: Optional[int] = field(
        default_factory=lambda: int(os.environ["METRICS_PORT"]) if os.getenv("METRICS_PORT") else None
    )


def get_path_settings() -> PathSettings:
    """Get path settings."""
    return PathSettings()


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_storage_settings() -> StorageSettings:
    """Get storage settings."""
    return StorageSettings()


def get_learning_settings() -> LearningSettings:
    """Get learning settings."""
    return LearningSettings()


def get_quota_settings() -> QuotaSettings:
    """Get quota settings."""
    return QuotaSettings()


def get_cache_settings() -> CacheSettings:
    """Get translation cache settings."""
    return CacheSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    paths: PathSettings = field(default_factory=get_path_settings)
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    storage: StorageSettings = field(default_factory=get_storage_settings)
    learning: LearningSettings = field(default_factory=get_learning_settings)
    quota: QuotaSettings = field(default_factory=get_quota_settings)
    cache: CacheSettings = field(default_factory=get_cache_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        if self.storage.max_retries < 1:
            raise ValueError("STORAGE_MAX_RETRIES must be positive")

        if not self.storage.retry_delays:
            raise ValueError("STORAGE_RETRY_DELAYS must contain at least one delay")

        if any(delay < 0 for delay in self.storage.retry_delays) or self.storage.batch_delay < 0:
            raise ValueError("Storage delays cannot be negative")

        if self.learning.min_ease_factor <= 0:
            raise ValueError("MIN_EASE_FACTOR must be positive")

        if self.learning.default_ease_factor < self.learning.min_ease_factor:
            raise ValueError("DEFAULT_EASE_FACTOR cannot be lower than MIN_EASE_FACTOR")

        if self.learning.max_ease_factor is not None and \
           self.learning.max_ease_factor < self.learning.default_ease_factor:
            raise ValueError("MAX_EASE_FACTOR cannot be lower than DEFAULT_EASE_FACTOR")

        if self.learning.words_per_page < 1:
            raise ValueError("WORDS_PER_PAGE must be positive")

        if self.quota.daily_words < 0 or self.quota.daily_explanations < 0:
            raise ValueError("Daily limits cannot be negative")

        if self.cache.trim_to > self.cache.max_entries:
            raise ValueError("TRANSLATION_CACHE_TRIM_TO cannot exceed TRANSLATION_CACHE_MAX_ENTRIES")


# Create global settings instance
settings = Settings()
settings.validate()
