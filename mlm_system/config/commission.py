"""
Commission settings passed explicitly into the MLM services.

Built once from Config; services never read process environment themselves.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional
import logging

from config import Config, ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_LEVEL_RATES = {
    1: Decimal("5"),
    2: Decimal("3"),
    3: Decimal("2"),
}

# Course rates used only by the earnings projection; payouts use levelRates
DEFAULT_PROJECTION_COURSE_RATES = {
    1: Decimal("10"),
    2: Decimal("5"),
    3: Decimal("3"),
}


@dataclass(frozen=True)
class CommissionSettings:
    """
    Immutable commission configuration.

    Rates are percentages (5 means 5%).
    """
    maxLevels: int = 3
    levelRates: Dict[int, Decimal] = field(default_factory=lambda: dict(DEFAULT_LEVEL_RATES))
    joinBonusAmount: Decimal = Decimal("100")
    avgMonthlyRecharge: Decimal = Decimal("500")
    avgYearlyCourseSpend: Decimal = Decimal("1000")
    projectionCourseRates: Dict[int, Decimal] = field(
        default_factory=lambda: dict(DEFAULT_PROJECTION_COURSE_RATES)
    )

    def __post_init__(self):
        if not 1 <= self.maxLevels <= Config.SUPPORTED_MAX_LEVELS:
            raise ConfigurationError(
                f"maxLevels must be between 1 and {Config.SUPPORTED_MAX_LEVELS}, got {self.maxLevels}"
            )
        for level in range(1, self.maxLevels + 1):
            if level not in self.levelRates:
                raise ConfigurationError(f"No commission rate configured for level {level}")

    def rateFor(self, level: int) -> Optional[Decimal]:
        """Rate for a level, None when the level is outside 1..maxLevels."""
        if not 1 <= level <= self.maxLevels:
            return None
        return self.levelRates.get(level)

    def projectionCourseRateFor(self, level: int) -> Decimal:
        """Projected course rate for a level, 0 outside 1..maxLevels."""
        if not 1 <= level <= self.maxLevels:
            return Decimal("0")
        return self.projectionCourseRates.get(level, Decimal("0"))

    @property
    def totalRate(self) -> Decimal:
        return sum(
            (self.levelRates[level] for level in range(1, self.maxLevels + 1)),
            Decimal("0")
        )

    @classmethod
    def from_config(cls) -> "CommissionSettings":
        """Build settings from the loaded Config, falling back to defaults."""
        if not Config.is_initialized():
            Config.initialize_from_env()

        settings = cls(
            maxLevels=Config.get(Config.MAX_LEVELS, 3),
            levelRates={
                1: Config.get(Config.LEVEL_1_COMMISSION, DEFAULT_LEVEL_RATES[1]),
                2: Config.get(Config.LEVEL_2_COMMISSION, DEFAULT_LEVEL_RATES[2]),
                3: Config.get(Config.LEVEL_3_COMMISSION, DEFAULT_LEVEL_RATES[3]),
            },
            joinBonusAmount=Config.get(Config.JOIN_BONUS_AMOUNT, Decimal("100")),
            avgMonthlyRecharge=Config.get(Config.AVG_MONTHLY_RECHARGE, Decimal("500")),
            avgYearlyCourseSpend=Config.get(Config.AVG_YEARLY_COURSE_SPEND, Decimal("1000")),
        )
        logger.debug(f"Commission settings: {settings}")
        return settings
