from typing import Any, Dict

from ..common.errors import TaskRunnerError
from ..core.dispatcher import runner
from ..lib.utils import from_iso
from ..schemas.task import Task
from .base import ProviderRunner

LAMPORTS_PER_SOL = 1_000_000_000


@runner("wallet-monitor")
class WalletMonitorRunner(ProviderRunner):
    """Watch a wallet for new and large transactions."""

    async def execute(self, task: Task) -> Dict[str, Any]:
        config = self.config_for(task)
        result: Dict[str, Any] = {
            "wallet": config.wallet_address,
            "balance": 0.0,
            "tokens": [],
            "recent_transactions": [],
            "alert": False,
            "alerts": [],
        }

        try:
            result["balance"] = await self.provider.get_wallet_balance(config.wallet_address)
            transactions = await self.provider.get_recent_transactions(
                config.wallet_address, 20
            )
            result["recent_transactions"] = [
                {"signature": tx["signature"], "block_time": tx["block_time"], "type": "transfer"}
                for tx in transactions[:5]
            ]

            last_run = from_iso(task["last_run"])
            if last_run is not None:
                new = [tx for tx in transactions if from_iso(tx["block_time"]) > last_run]  # type: ignore

                if new and config.alert_on_transaction:
                    result["alert"] = True
                    result["alerts"].append(f"{len(new)} new transaction(s) detected")

                if config.min_transaction_amount:
                    large = [
                        tx
                        for tx in new
                        if abs(tx["post_balance"] - tx["pre_balance"]) / LAMPORTS_PER_SOL
                        >= config.min_transaction_amount
                    ]
                    if large:
                        result["alert"] = True
                        result["alerts"].append(f"{len(large)} large transaction(s) detected")

            for mint in config.track_tokens:
                balance = await self.provider.get_token_balance(config.wallet_address, mint)
                result["tokens"].append({"mint": mint, "balance": balance})
        except Exception as e:
            raise TaskRunnerError(f"Wallet monitoring failed: {e}") from e

        return result


@runner("portfolio-tracker")
class PortfolioTrackerRunner(ProviderRunner):
    """Value a portfolio and flag large daily moves."""

    async def execute(self, task: Task) -> Dict[str, Any]:
        config = self.config_for(task)
        result: Dict[str, Any] = {
            "total_value": 0.0,
            "tokens": [],
            "alert": False,
            "alerts": [],
        }

        try:
            for mint in config.tracking_tokens:
                balance = await self.provider.get_token_balance(config.portfolio_address, mint)
                market = await self.provider.get_market_data(mint)
                value = balance * market["price"]
                result["total_value"] += value
                result["tokens"].append(
                    {
                        "mint": mint,
                        "balance": balance,
                        "value": value,
                        "change_24h": market["change_24h"],
                    }
                )
        except Exception as e:
            raise TaskRunnerError(f"Portfolio tracking failed: {e}") from e

        for token in result["tokens"]:
            if abs(token["change_24h"]) > config.rebalance_threshold:
                result["alert"] = True
                result["alerts"].append(
                    f"{token['mint']} changed {token['change_24h']:.2f}% in 24h"
                )

        return result
