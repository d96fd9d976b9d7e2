"""
MLM rank configuration and constants.

Ranks need BOTH a network-size floor and a total-earnings floor.
"""
from enum import Enum
from decimal import Decimal
from typing import Dict, Any


class Rank(Enum):
    """MLM rank enumeration, lowest to highest."""
    STARTER = "Starter"
    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"
    DIAMOND = "Diamond"


RANK_ORDER = [Rank.STARTER, Rank.BRONZE, Rank.SILVER, Rank.GOLD, Rank.DIAMOND]

RANK_CONFIG: Dict[Rank, Dict[str, Any]] = {
    Rank.STARTER: {
        "networkRequired": 0,
        "earningsRequired": Decimal("0"),
    },
    Rank.BRONZE: {
        "networkRequired": 25,
        "earningsRequired": Decimal("2500"),
    },
    Rank.SILVER: {
        "networkRequired": 100,
        "earningsRequired": Decimal("10000"),
    },
    Rank.GOLD: {
        "networkRequired": 500,
        "earningsRequired": Decimal("50000"),
    },
    Rank.DIAMOND: {
        "networkRequired": 1000,
        "earningsRequired": Decimal("100000"),
    },
}
