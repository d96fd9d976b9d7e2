# config.py
"""
Configuration management for the MLM commission core.
Loads from .env, validates commission keys.
"""
import os
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Configuration error exception."""
    pass


class Config:
    """
    Configuration manager with static and dynamic values.

    Usage:
        # Load from .env
        Config.initialize_from_env()

        # Get value
        maxLevels = Config.get(Config.MAX_LEVELS)

        # Override at runtime (tests, admin tools)
        Config.set(Config.JOIN_BONUS_AMOUNT, Decimal("50"))
    """

    # ═══════════════════════════════════════════════════════════════════════
    # CONFIGURATION KEYS
    # ═══════════════════════════════════════════════════════════════════════

    # Database
    DATABASE_URL = "DATABASE_URL"
    STORE_RETRY_ATTEMPTS = "STORE_RETRY_ATTEMPTS"

    # MLM System
    MAX_LEVELS = "MAX_LEVELS"
    LEVEL_1_COMMISSION = "LEVEL_1_COMMISSION"
    LEVEL_2_COMMISSION = "LEVEL_2_COMMISSION"
    LEVEL_3_COMMISSION = "LEVEL_3_COMMISSION"
    JOIN_BONUS_AMOUNT = "JOIN_BONUS_AMOUNT"
    REFERRAL_BONUS_PERCENTAGE = "REFERRAL_BONUS_PERCENTAGE"

    # Earnings projection
    AVG_MONTHLY_RECHARGE = "AVG_MONTHLY_RECHARGE"
    AVG_YEARLY_COURSE_SPEND = "AVG_YEARLY_COURSE_SPEND"

    # Commission processor
    COMMISSION_BATCH_SIZE = "COMMISSION_BATCH_SIZE"
    COMMISSION_MAX_ATTEMPTS = "COMMISSION_MAX_ATTEMPTS"
    COMMISSION_POLL_SECONDS = "COMMISSION_POLL_SECONDS"
    COMMISSION_TASK_LEASE_SECONDS = "COMMISSION_TASK_LEASE_SECONDS"

    # System
    LOG_LEVEL = "LOG_LEVEL"

    # Supported depth is bounded by the per-level earnings columns on User
    SUPPORTED_MAX_LEVELS = 3

    # ═══════════════════════════════════════════════════════════════════════
    # STORAGE
    # ═══════════════════════════════════════════════════════════════════════

    _config: Dict[str, Any] = {}
    _initialized: bool = False

    # ═══════════════════════════════════════════════════════════════════════
    # METHODS
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    def initialize_from_env(cls) -> None:
        """
        Load configuration from .env file and process environment.

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        load_dotenv()

        logger.info("Loading configuration from environment...")

        try:
            # Database
            cls._config[cls.DATABASE_URL] = os.getenv(
                "DATABASE_URL",
                "sqlite:///mlm.db"
            )
            cls._config[cls.STORE_RETRY_ATTEMPTS] = int(os.getenv("STORE_RETRY_ATTEMPTS", "3"))

            # MLM
            cls._config[cls.MAX_LEVELS] = int(os.getenv("MAX_LEVELS", "3"))
            cls._config[cls.LEVEL_1_COMMISSION] = Decimal(os.getenv("LEVEL_1_COMMISSION", "5"))
            cls._config[cls.LEVEL_2_COMMISSION] = Decimal(os.getenv("LEVEL_2_COMMISSION", "3"))
            cls._config[cls.LEVEL_3_COMMISSION] = Decimal(os.getenv("LEVEL_3_COMMISSION", "2"))
            cls._config[cls.JOIN_BONUS_AMOUNT] = Decimal(os.getenv("JOIN_BONUS_AMOUNT", "100"))
            cls._config[cls.REFERRAL_BONUS_PERCENTAGE] = Decimal(
                os.getenv("REFERRAL_BONUS_PERCENTAGE", "10")
            )

            # Projection
            cls._config[cls.AVG_MONTHLY_RECHARGE] = Decimal(os.getenv("AVG_MONTHLY_RECHARGE", "500"))
            cls._config[cls.AVG_YEARLY_COURSE_SPEND] = Decimal(
                os.getenv("AVG_YEARLY_COURSE_SPEND", "1000")
            )

            # Commission processor
            cls._config[cls.COMMISSION_BATCH_SIZE] = int(os.getenv("COMMISSION_BATCH_SIZE", "50"))
            cls._config[cls.COMMISSION_MAX_ATTEMPTS] = int(os.getenv("COMMISSION_MAX_ATTEMPTS", "5"))
            cls._config[cls.COMMISSION_POLL_SECONDS] = int(os.getenv("COMMISSION_POLL_SECONDS", "10"))
            cls._config[cls.COMMISSION_TASK_LEASE_SECONDS] = int(
                os.getenv("COMMISSION_TASK_LEASE_SECONDS", "300")
            )

            # System
            cls._config[cls.LOG_LEVEL] = os.getenv("LOG_LEVEL", "INFO").upper()

            cls._initialized = True
            logger.info("Configuration loaded from environment successfully")

        except (ValueError, InvalidOperation) as e:
            logger.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}")

        cls.validate_commission_keys()

    @classmethod
    def validate_commission_keys(cls) -> None:
        """
        Validate commission configuration.

        Raises:
            ConfigurationError: If depth or rates are out of range
        """
        maxLevels = cls.get(cls.MAX_LEVELS, 3)
        if not 1 <= maxLevels <= cls.SUPPORTED_MAX_LEVELS:
            raise ConfigurationError(
                f"MAX_LEVELS must be between 1 and {cls.SUPPORTED_MAX_LEVELS}, got {maxLevels}"
            )

        for key in (cls.LEVEL_1_COMMISSION, cls.LEVEL_2_COMMISSION, cls.LEVEL_3_COMMISSION):
            rate = cls.get(key, Decimal("0"))
            if rate < 0 or rate > 100:
                raise ConfigurationError(f"{key} must be a percentage in 0..100, got {rate}")

        if cls.get(cls.JOIN_BONUS_AMOUNT, Decimal("0")) < 0:
            raise ConfigurationError("JOIN_BONUS_AMOUNT must not be negative")

        if os.getenv("REFERRAL_BONUS_PERCENTAGE"):
            logger.warning(
                "REFERRAL_BONUS_PERCENTAGE is set but not used: "
                "the join bonus is the flat JOIN_BONUS_AMOUNT"
            )

        logger.info("Commission configuration validated ✓")

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._initialized

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return cls._config.get(key, default)

    @classmethod
    def set(cls, key: str, value: Any, source: str = "runtime") -> None:
        """
        Set configuration value (for dynamic updates).

        Args:
            key: Configuration key
            value: New value
            source: Source of the update (for logging)
        """
        cls._config[key] = value
        logger.debug(f"Config updated: {key} = {value} (source: {source})")

    @classmethod
    def get_all(cls) -> Dict[str, Any]:
        """
        Get all configuration values.

        Returns:
            Copy of configuration dictionary
        """
        return cls._config.copy()
