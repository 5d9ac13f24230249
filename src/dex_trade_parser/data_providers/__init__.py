"""
External data used by the classifier.

- JupiterTradeOracle: signature -> swap as routed by Jupiter
- JupiterSolPriceSource: SOL/USD price for ``price_usd``
"""

from .jupiter_oracle import JupiterTradeOracle, OracleTrade
from .sol_price import JupiterSolPriceSource

__all__ = ["JupiterTradeOracle", "OracleTrade", "JupiterSolPriceSource"]
