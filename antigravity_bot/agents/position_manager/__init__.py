from .ledger import PortfolioLedger
from .manager import PositionManager, floating_pnl

__all__ = ["PortfolioLedger", "PositionManager", "floating_pnl"]
