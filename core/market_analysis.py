"""Market trends and opportunities derived from pool snapshots."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List

from core.decimal_math import HUNDRED, ONE
from core.pool_models import MarketData, MarketOpportunity, MarketTrend, PoolSnapshot

logger = logging.getLogger(__name__)

TREND_THRESHOLD = Decimal("0.01")
FEE_COLLECTION_THRESHOLD = Decimal(100)


class MarketAnalyzer:
    """
    Attach trends and opportunities to a set of pool snapshots.

    Args:
        target_apr: APR, as a fraction, above which a pool is flagged as a
            liquidity-provision opportunity
        fee_collection_threshold: fees_24h (quote units) above which a pool
            is flagged as a fee-collection opportunity
    """

    def __init__(
        self,
        target_apr: Decimal = Decimal("0.10"),
        fee_collection_threshold: Decimal = FEE_COLLECTION_THRESHOLD,
    ):
        self.target_apr = target_apr
        self.fee_collection_threshold = fee_collection_threshold

    def trend(self, snapshot: PoolSnapshot) -> MarketTrend:
        change = snapshot.metrics.price_change_24h
        if change > TREND_THRESHOLD:
            direction = "bullish"
        elif change < -TREND_THRESHOLD:
            direction = "bearish"
        else:
            direction = "sideways"
        return MarketTrend(
            pool_address=snapshot.address,
            direction=direction,
            strength=min(ONE, snapshot.metrics.volatility),
            price_change_24h=change,
        )

    def opportunities(self, snapshot: PoolSnapshot) -> List[MarketOpportunity]:
        found = []
        apr_fraction = snapshot.metrics.apr / HUNDRED
        if apr_fraction > self.target_apr:
            found.append(MarketOpportunity(
                pool_address=snapshot.address,
                kind="liquidity_provision",
                score=apr_fraction,
                reason=f"APR {apr_fraction:.4f} above target {self.target_apr}",
            ))
        if snapshot.metrics.fees_24h > self.fee_collection_threshold:
            found.append(MarketOpportunity(
                pool_address=snapshot.address,
                kind="fee_collection",
                score=snapshot.metrics.fees_24h,
                reason=f"fees_24h {snapshot.metrics.fees_24h} above {self.fee_collection_threshold}",
            ))
        return found

    def build(self, snapshots: Dict[str, PoolSnapshot], timestamp: datetime) -> MarketData:
        trends = [self.trend(s) for s in snapshots.values()]
        opportunities = [o for s in snapshots.values() for o in self.opportunities(s)]
        logger.debug(
            f"Market data: {len(snapshots)} pools, {len(opportunities)} opportunities"
        )
        return MarketData(
            pools=dict(snapshots),
            timestamp=timestamp,
            trends=trends,
            opportunities=opportunities,
        )
