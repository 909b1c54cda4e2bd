from typing import Any, Dict

from ..common.errors import TaskRunnerError
from ..core.dispatcher import runner
from ..schemas.task import Task
from .base import ProviderRunner

# Minimum cross-venue spread (percent) reported as an arbitrage opportunity.
ARBITRAGE_SPREAD = 1.0


@runner("price-alert")
class PriceAlertRunner(ProviderRunner):
    """Compare a token price against configured thresholds."""

    async def execute(self, task: Task) -> Dict[str, Any]:
        config = self.config_for(task)
        threshold = config.price_threshold

        try:
            market = await self.provider.get_market_data(config.token_mint)
        except Exception as e:
            raise TaskRunnerError(f"Price monitoring failed: {e}") from e

        current = market["price"]
        previous = ((task["last_result"] or {}).get("data") or {}).get("current_price")
        change = current - previous if previous else 0.0
        change_percent = change / previous * 100 if previous else 0.0

        alerts = []
        if threshold.above is not None and current > threshold.above:
            alerts.append(f"Price above ${threshold.above} threshold")
        if threshold.below is not None and current < threshold.below:
            alerts.append(f"Price below ${threshold.below} threshold")
        if threshold.percent_change and abs(change_percent) >= threshold.percent_change:
            alerts.append(f"Price changed by {change_percent:.2f}%")

        return {
            "token": config.token_symbol,
            "current_price": current,
            "previous_price": previous or 0.0,
            "change": change,
            "change_percent": change_percent,
            "market_data": {
                "volume_24h": market["volume_24h"],
                "market_cap": market["market_cap"],
                "change_24h": market["change_24h"],
            },
            "alert": bool(alerts),
            "alerts": alerts,
        }


@runner("auto-trade")
class AutoTradeRunner(ProviderRunner):
    """Simulate a DCA, grid or arbitrage strategy. Never places orders."""

    async def execute(self, task: Task) -> Dict[str, Any]:
        config = self.config_for(task)
        mint = config.token_mint or "LYN"
        result: Dict[str, Any] = {
            "strategy": config.strategy,
            "simulated": True,
            "action": "none",
            "alert": False,
            "message": "",
        }

        try:
            market = await self.provider.get_market_data(mint)
            price = market["price"]

            if config.strategy == "dca":
                result["action"] = "buy"
                result["message"] = f"DCA Strategy: Simulated buy at ${price:.4f}"
                if config.amount:
                    result["quantity"] = config.amount / price

            elif config.strategy == "grid":
                level = next(
                    (i for i, bound in enumerate(config.grid_levels) if price < bound),
                    len(config.grid_levels),
                )
                previous = ((task["last_result"] or {}).get("data") or {}).get("grid_level")
                if previous is not None and previous != level:
                    result["action"] = "buy" if level < previous else "sell"
                    result["message"] = (
                        f"Grid Strategy: Simulated {result['action']} at ${price:.4f}"
                    )
                result["grid_level"] = level

            elif config.strategy == "arbitrage":
                other = await self.provider.get_market_data(mint)
                spread = abs(other["price"] - price) / price * 100
                result["spread_percent"] = spread
                if spread >= ARBITRAGE_SPREAD:
                    result["action"] = "buy"
                    result["message"] = "Arbitrage opportunity detected (simulated)"
                    result["alert"] = True
        except Exception as e:
            raise TaskRunnerError(f"Auto-trade simulation failed: {e}") from e

        result["market_data"] = {
            "price": market["price"],
            "volume": market["volume_24h"],
            "change_24h": market["change_24h"],
        }
        return result


@runner("defi-monitor")
class DefiMonitorRunner(ProviderRunner):
    """Track protocol TVL, yield opportunities and risk flags."""

    async def execute(self, task: Task) -> Dict[str, Any]:
        config = self.config_for(task)
        result: Dict[str, Any] = {
            "protocols_monitored": len(config.protocols),
            "total_value_locked": 0.0,
            "yield_opportunities": [],
            "risks": [],
            "alert": False,
        }

        try:
            for protocol in config.protocols:
                data = await self.provider.get_protocol_data(protocol)
                result["total_value_locked"] += data["tvl"]

                if data["apy"] > config.yield_threshold:
                    result["yield_opportunities"].append(
                        {
                            "protocol": protocol,
                            "apy": data["apy"],
                            "risk": data["risk"],
                            "liquidity": data["liquidity"],
                        }
                    )
                if data["risks"]:
                    result["risks"].extend(data["risks"])
                    result["alert"] = True
        except Exception as e:
            raise TaskRunnerError(f"DeFi monitoring failed: {e}") from e

        return result


@runner("nft-tracker")
class NftTrackerRunner(ProviderRunner):
    """Track collection floor prices and volume."""

    async def execute(self, task: Task) -> Dict[str, Any]:
        config = self.config_for(task)
        result: Dict[str, Any] = {
            "collections_tracked": len(config.nft_collections),
            "floor_prices": [],
            "alerts": [],
            "alert": False,
        }

        try:
            for collection in config.nft_collections:
                data = await self.provider.get_nft_collection(collection)
                result["floor_prices"].append({"collection": collection, **data})

                if config.floor_price_alerts and abs(data["change_24h"]) > config.change_threshold:
                    result["alert"] = True
                    result["alerts"].append(
                        f"{collection} floor price changed {data['change_24h']:.2f}%"
                    )
        except Exception as e:
            raise TaskRunnerError(f"NFT tracking failed: {e}") from e

        return result
