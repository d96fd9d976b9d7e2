# mlm_system/__init__.py
"""
MLM System - referral chains, commission distribution and network analytics.
"""

# Services
from mlm_system.services.ledger_service import LedgerService, LedgerField
from mlm_system.services.upline_service import UplineService
from mlm_system.services.commission_service import CommissionService, DistributionResult
from mlm_system.services.purchase_service import PurchaseService, ServiceProvider, ProviderResult
from mlm_system.services.rank_service import RankService, getRank, getNextRank, calculateRankProgress
from mlm_system.services.network_service import NetworkService, NetworkSize
from mlm_system.services.earnings_service import EarningsService

# Configuration
from mlm_system.config.commission import CommissionSettings
from mlm_system.config.ranks import Rank, RANK_CONFIG

__all__ = [
    # Services
    'LedgerService',
    'LedgerField',
    'UplineService',
    'CommissionService',
    'DistributionResult',
    'PurchaseService',
    'ServiceProvider',
    'ProviderResult',
    'RankService',
    'getRank',
    'getNextRank',
    'calculateRankProgress',
    'NetworkService',
    'NetworkSize',
    'EarningsService',

    # Config
    'CommissionSettings',
    'Rank',
    'RANK_CONFIG',
]
