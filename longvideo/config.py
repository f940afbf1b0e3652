"""
Application Configuration - Environment Variable Management.
Loads and validates configuration from .env file.
"""
import os
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env from project root
PROJECT_ROOT = Path(__file__).parent.parent
ENV_FILE = PROJECT_ROOT / ".env"

if ENV_FILE.exists():
    load_dotenv(ENV_FILE)
    logger.info(f"Loaded environment from {ENV_FILE}")
else:
    logger.warning(f".env file not found at {ENV_FILE}")

DEFAULT_API_BASE = "https://api.vectorengine.ai"
MAX_NUMBERED_KEYS = 50


def _is_real_key(value: Optional[str]) -> bool:
    return bool(value and value.strip() and not value.strip().startswith("PASTE_"))


def _read_api_keys() -> List[str]:
    """
    Collect upstream API keys.

    Accepts a comma-separated VECTORENGINE_API_KEYS list and/or numbered
    VECTORENGINE_API_KEY_1..N variables. Order is preserved, duplicates dropped.
    """
    keys: List[str] = []

    for raw in os.getenv("VECTORENGINE_API_KEYS", "").split(","):
        if _is_real_key(raw):
            keys.append(raw.strip())

    for i in range(1, MAX_NUMBERED_KEYS + 1):
        value = os.getenv(f"VECTORENGINE_API_KEY_{i}")
        if _is_real_key(value):
            keys.append(value.strip())

    seen = set()
    unique = []
    for key in keys:
        if key not in seen:
            seen.add(key)
            unique.append(key)
    return unique


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid float for {name}={value!r}, using {default}")
        return default


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={value!r}, using {default}")
        return default


@dataclass
class CredentialsConfig:
    """Upstream credentials."""
    api_keys: List[str] = field(default_factory=list)
    openrouter_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    api_base: str = DEFAULT_API_BASE

    @property
    def has_pool(self) -> bool:
        return len(self.api_keys) > 0

    @property
    def has_openrouter(self) -> bool:
        return _is_real_key(self.openrouter_api_key)

    @property
    def has_openai(self) -> bool:
        return _is_real_key(self.openai_api_key)

    @property
    def has_backup_llm(self) -> bool:
        return self.has_openrouter or self.has_openai


@dataclass
class BatchConfig:
    """Segment and batch decomposition settings."""
    segment_duration: int = 8
    batch_size: int = 6
    credential_groups: int = 3
    inter_batch_cooldown: float = 5.0
    default_segment_seconds: float = 30.0  # ETA estimate before any segment finishes
    task_ttl_days: int = 7


@dataclass
class RetryConfig:
    """Transient-fault retry and upstream timeout settings."""
    max_retries: int = 5
    base_delay: float = 3.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    generation_timeout: float = 120.0
    merge_timeout: float = 60.0
    poll_interval: float = 5.0
    max_poll_attempts: int = 60


@dataclass
class PathsConfig:
    """File system paths configuration."""
    data_dir: Path
    media_dir: Path
    ffmpeg_path: str
    ffprobe_path: str

    @classmethod
    def detect(cls) -> "PathsConfig":
        """Auto-detect paths based on environment and system."""
        data_dir = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
        data_dir.mkdir(parents=True, exist_ok=True)

        media_dir = Path(os.getenv("MEDIA_DIR", str(data_dir / "media")))
        media_dir.mkdir(parents=True, exist_ok=True)

        return cls(
            data_dir=data_dir,
            media_dir=media_dir,
            ffmpeg_path=cls._find_ffmpeg(),
            ffprobe_path=cls._find_ffprobe(),
        )

    @staticmethod
    def _find_ffmpeg() -> str:
        """Find FFmpeg executable."""
        env_path = os.getenv("FFMPEG_PATH")
        if env_path and os.path.exists(env_path):
            return env_path

        common_paths = [
            r"C:\ffmpeg\bin\ffmpeg.exe",
            r"C:\Program Files\ffmpeg\bin\ffmpeg.exe",
            "/usr/bin/ffmpeg",
            "/usr/local/bin/ffmpeg",
        ]

        for path in common_paths:
            if os.path.exists(path):
                return path

        # Try imageio-ffmpeg
        try:
            import imageio_ffmpeg
            return imageio_ffmpeg.get_ffmpeg_exe()
        except ImportError:
            pass

        # Fallback to system PATH
        return "ffmpeg"

    @staticmethod
    def _find_ffprobe() -> str:
        """Find FFprobe executable."""
        env_path = os.getenv("FFPROBE_PATH")
        if env_path and os.path.exists(env_path):
            return env_path

        common_paths = [
            r"C:\ffmpeg\bin\ffprobe.exe",
            r"C:\Program Files\ffmpeg\bin\ffprobe.exe",
            "/usr/bin/ffprobe",
            "/usr/local/bin/ffprobe",
        ]

        for path in common_paths:
            if os.path.exists(path):
                return path

        try:
            import imageio_ffmpeg
            ffmpeg_path = imageio_ffmpeg.get_ffmpeg_exe()
            ffprobe_path = ffmpeg_path.replace("ffmpeg", "ffprobe")
            if os.path.exists(ffprobe_path):
                return ffprobe_path
        except ImportError:
            pass

        return "ffprobe"


@dataclass
class AppConfig:
    """Main Application Configuration."""
    credentials: CredentialsConfig
    batch: BatchConfig
    retry: RetryConfig
    paths: PathsConfig
    storage_backend: str = "sqlite"
    database_path: str = "data/app.db"
    public_base_url: str = "http://localhost:8000"
    debug: bool = False

    def __post_init__(self):
        """Validate critical configuration."""
        if self.batch.segment_duration <= 0:
            raise ValueError("SEGMENT_DURATION must be positive")
        if self.batch.batch_size <= 0:
            raise ValueError("BATCH_SIZE must be positive")
        if self.batch.credential_groups <= 0:
            raise ValueError("CREDENTIAL_GROUPS must be positive")
        if not self.credentials.has_pool:
            logger.warning("No VECTORENGINE_API_KEY configured - generation endpoints will be unavailable")

    def validate(self) -> dict:
        """Validate configuration and return status."""
        return {
            "credentials": {
                "pool_size": len(self.credentials.api_keys),
                "pool_configured": self.credentials.has_pool,
                "openrouter_configured": self.credentials.has_openrouter,
                "openai_configured": self.credentials.has_openai,
                "backup_llm_configured": self.credentials.has_backup_llm,
            },
            "batch": {
                "segment_duration": self.batch.segment_duration,
                "batch_size": self.batch.batch_size,
                "credential_groups": self.batch.credential_groups,
            },
            "database": {
                "backend": self.storage_backend,
                "path": self.database_path,
            },
            "ready_for_generation": self.credentials.has_pool,
        }

    def log_status(self):
        """Log configuration status (without exposing keys)."""
        status = self.validate()

        logger.info("=" * 50)
        logger.info("Configuration Status:")
        logger.info(f"  API key pool: {status['credentials']['pool_size']} keys")
        logger.info(f"  OpenRouter backup: {'OK' if status['credentials']['openrouter_configured'] else 'NOT CONFIGURED'}")
        logger.info(f"  OpenAI backup: {'OK' if status['credentials']['openai_configured'] else 'NOT CONFIGURED'}")
        logger.info(f"  Segments: {self.batch.segment_duration}s x batches of {self.batch.batch_size}")
        logger.info(f"  Database: {status['database']['backend']}")
        logger.info(f"  Data Dir: {self.paths.data_dir}")
        logger.info(f"  FFmpeg: {self.paths.ffmpeg_path}")
        logger.info("=" * 50)

        if not status["ready_for_generation"]:
            logger.warning("No upstream API keys - tasks cannot be generated")


def load_config() -> AppConfig:
    """Load configuration from environment variables."""
    credentials = CredentialsConfig(
        api_keys=_read_api_keys(),
        openrouter_api_key=os.getenv("OPENROUTER_API_KEY"),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        api_base=os.getenv("VECTORENGINE_API_BASE", DEFAULT_API_BASE),
    )

    batch = BatchConfig(
        segment_duration=_int_env("SEGMENT_DURATION", 8),
        batch_size=_int_env("BATCH_SIZE", 6),
        credential_groups=_int_env("CREDENTIAL_GROUPS", 3),
        inter_batch_cooldown=_float_env("INTER_BATCH_COOLDOWN", 5.0),
        default_segment_seconds=_float_env("DEFAULT_SEGMENT_SECONDS", 30.0),
        task_ttl_days=_int_env("TASK_TTL_DAYS", 7),
    )

    retry = RetryConfig(
        max_retries=_int_env("RETRY_MAX_RETRIES", 5),
        base_delay=_float_env("RETRY_BASE_DELAY", 3.0),
        multiplier=_float_env("RETRY_MULTIPLIER", 2.0),
        max_delay=_float_env("RETRY_MAX_DELAY", 30.0),
        generation_timeout=_float_env("GENERATION_TIMEOUT", 120.0),
        merge_timeout=_float_env("MERGE_TIMEOUT", 60.0),
        poll_interval=_float_env("POLL_INTERVAL", 5.0),
        max_poll_attempts=_int_env("MAX_POLL_ATTEMPTS", 60),
    )

    return AppConfig(
        credentials=credentials,
        batch=batch,
        retry=retry,
        paths=PathsConfig.detect(),
        storage_backend=os.getenv("STORAGE_BACKEND", "sqlite"),
        database_path=os.getenv("DATABASE_PATH", "data/app.db"),
        public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/"),
        debug=os.getenv("DEBUG", "false").lower() == "true",
    )


# Global config instance
config = load_config()
