"""
Builder orchestrator configuration management.

All configuration values in one place, loaded from environment variables (and a
.env file, if present) with sensible defaults.
"""

from dataclasses import dataclass
import os
import logging

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_BUILDER_IMAGE = "docker-hub-mirror.fly.io/flyio/rchab:sha-9346699"


@dataclass
class BuilderConfig:
    """All builder orchestrator configuration in one place."""

    # Fleet API
    api_base_url: str
    api_token: str
    api_timeout_sec: float

    # Builder machine
    default_image: str
    volume_size_gb: int
    builder_log_level: str

    # Retry policies
    retry_interval_sec: float
    read_attempts: int
    volume_create_attempts: int

    # Waiting for a new app to register
    app_ready_timeout_sec: float

    @classmethod
    def from_env(cls) -> 'BuilderConfig':
        """Load all config from environment with defaults."""
        load_dotenv()

        read_attempts = int(os.getenv("BUILDER_READ_ATTEMPTS", "3"))
        volume_attempts = int(os.getenv("BUILDER_VOLUME_CREATE_ATTEMPTS", "5"))
        retry_interval = float(os.getenv("BUILDER_RETRY_INTERVAL_SEC", "1.0"))

        # Clamp retry settings to something a RetryPolicy accepts
        if read_attempts < 1:
            logger.warning("BUILDER_READ_ATTEMPTS must be at least 1, setting to 1")
            read_attempts = 1
        if volume_attempts < 1:
            logger.warning("BUILDER_VOLUME_CREATE_ATTEMPTS must be at least 1, setting to 1")
            volume_attempts = 1
        if retry_interval < 0:
            logger.warning("BUILDER_RETRY_INTERVAL_SEC cannot be negative, setting to 0")
            retry_interval = 0.0

        return cls(
            # Fleet API
            api_base_url=os.getenv("FLEET_API_BASE_URL", "https://api.machines.dev").rstrip("/"),
            api_token=os.getenv("FLEET_API_TOKEN", ""),
            api_timeout_sec=float(os.getenv("FLEET_API_TIMEOUT_SEC", "30")),

            # Builder machine
            default_image=os.getenv("BUILDER_DEFAULT_IMAGE", DEFAULT_BUILDER_IMAGE),
            volume_size_gb=int(os.getenv("BUILDER_VOLUME_SIZE_GB", "50")),
            builder_log_level=os.getenv("BUILDER_LOG_LEVEL", "debug"),

            # Retry policies
            retry_interval_sec=retry_interval,
            read_attempts=read_attempts,
            volume_create_attempts=volume_attempts,

            app_ready_timeout_sec=float(os.getenv("BUILDER_APP_READY_TIMEOUT_SEC", "60")),
        )

    @classmethod
    def defaults(cls) -> 'BuilderConfig':
        """Built-in defaults, ignoring the environment."""
        return cls(
            api_base_url="https://api.machines.dev",
            api_token="",
            api_timeout_sec=30.0,
            default_image=DEFAULT_BUILDER_IMAGE,
            volume_size_gb=50,
            builder_log_level="debug",
            retry_interval_sec=1.0,
            read_attempts=3,
            volume_create_attempts=5,
            app_ready_timeout_sec=60.0,
        )

    def log_config(self):
        """Log all config values at startup for debugging."""
        logger.info("BUILDER CONFIG:")
        logger.info(f"   Fleet API: {self.api_base_url}, token: {'SET' if self.api_token else 'MISSING'}, timeout={self.api_timeout_sec}s")
        logger.info(f"   Builder: image={self.default_image}, volume={self.volume_size_gb}GB, log_level={self.builder_log_level}")
        logger.info(f"   Retries: reads={self.read_attempts}, volume_create={self.volume_create_attempts}, interval={self.retry_interval_sec}s")
        logger.info(f"   App ready timeout: {self.app_ready_timeout_sec}s")
