"""Built-in simulated runners for every task type.

Importing this package registers each runner with ``@runner``.
"""

from .base import ProviderRunner
from .governance import GovernanceMonitorRunner
from .market import AutoTradeRunner, DefiMonitorRunner, NftTrackerRunner, PriceAlertRunner
from .provider import DataProvider, SimulatedDataProvider
from .security import SecurityScanRunner, SmartContractAuditRunner, ThreatHunterRunner
from .wallet import PortfolioTrackerRunner, WalletMonitorRunner

__all__ = [
    "ProviderRunner",
    "DataProvider",
    "SimulatedDataProvider",
    "SecurityScanRunner",
    "ThreatHunterRunner",
    "SmartContractAuditRunner",
    "WalletMonitorRunner",
    "PortfolioTrackerRunner",
    "PriceAlertRunner",
    "AutoTradeRunner",
    "DefiMonitorRunner",
    "NftTrackerRunner",
    "GovernanceMonitorRunner",
]
