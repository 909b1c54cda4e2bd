"""Tests for runner registration, dispatch and the built-in runners."""

import pytest

from vigil.common.errors import InvalidTaskConfigError, TaskRunnerError, UnknownTaskTypeError
from vigil.core.dispatcher import RUNNER_CLASSES, Dispatcher, RunnerRegistry, TaskRunner, runner
from vigil.runners import PriceAlertRunner, SecurityScanRunner, SimulatedDataProvider
from vigil.schemas.config import validate_task_config
from vigil.schemas.task import TASK_TYPES


class FixedPriceProvider(SimulatedDataProvider):
    def __init__(self, price):
        super().__init__(seed=1)
        self.price = price

    async def get_market_data(self, token_mint):
        return {"price": self.price, "volume_24h": 1.0, "market_cap": 2.0, "change_24h": 0.5}


class StaticRunner(TaskRunner):
    def __init__(self, result):
        self.result = result

    async def execute(self, task):
        return self.result


def _task(task_type, config, last_result=None):
    return {
        "id": "t1",
        "name": f"{task_type} task",
        "type": task_type,
        "config": config,
        "last_run": None,
        "last_result": last_result,
    }


def test_default_registry_covers_every_type():
    registry = RunnerRegistry.from_defaults(SimulatedDataProvider(seed=7))
    assert registry.types() == sorted(TASK_TYPES)
    assert isinstance(registry.get("price-alert"), PriceAlertRunner)


def test_runner_decorator_validates_type():
    with pytest.raises(ValueError):
        runner("not-a-type")

    with pytest.raises(TypeError):

        @runner("price-alert")
        class NotARunner:
            pass


def test_runner_decorator_registers_description():
    previous = RUNNER_CLASSES["governance-monitor"]
    try:

        @runner("governance-monitor")
        class QuietGovernance(TaskRunner):
            """Never alerts.

            Longer text.
            """

            async def execute(self, task):
                return {"alert": False}

        assert RUNNER_CLASSES["governance-monitor"] is QuietGovernance
        assert QuietGovernance.task_type == "governance-monitor"
        assert QuietGovernance.description == "Never alerts."
    finally:
        RUNNER_CLASSES["governance-monitor"] = previous


@pytest.mark.asyncio
async def test_unregistered_type_is_rejected():
    dispatcher = Dispatcher(RunnerRegistry())
    with pytest.raises(UnknownTaskTypeError):
        await dispatcher.dispatch(_task("price-alert", {}))


@pytest.mark.asyncio
async def test_dispatch_normalizes_alert():
    registry = RunnerRegistry()
    registry.register("defi-monitor", StaticRunner({"tvl": 10}))
    registry.register("nft-tracker", StaticRunner({"alert": 1}))
    dispatcher = Dispatcher(registry)

    assert (await dispatcher.dispatch(_task("defi-monitor", {})))["alert"] is False
    assert (await dispatcher.dispatch(_task("nft-tracker", {})))["alert"] is True


@pytest.mark.asyncio
async def test_dispatch_rejects_non_dict_results():
    registry = RunnerRegistry()
    registry.register("defi-monitor", StaticRunner(["not", "a", "dict"]))

    with pytest.raises(TaskRunnerError):
        await Dispatcher(registry).dispatch(_task("defi-monitor", {}))


@pytest.mark.asyncio
async def test_trading_results_are_always_simulated():
    registry = RunnerRegistry()
    registry.register("auto-trade", StaticRunner({"action": "buy"}))
    result = await Dispatcher(registry).dispatch(_task("auto-trade", {}))
    assert result["simulated"] is True

    registry.register("auto-trade", StaticRunner({"action": "buy", "simulated": False}))
    with pytest.raises(TaskRunnerError):
        await Dispatcher(registry).dispatch(_task("auto-trade", {}))


@pytest.mark.asyncio
async def test_price_alert_thresholds():
    provider = FixedPriceProvider(0.06)
    config = {"token_mint": "LYNmint", "price_threshold": {"above": 0.05, "percent_change": 10}}

    result = await PriceAlertRunner(provider).execute(
        _task("price-alert", config, {"data": {"current_price": 0.05}})
    )

    assert result["alert"] is True
    assert result["previous_price"] == 0.05
    assert round(result["change_percent"]) == 20
    assert len(result["alerts"]) == 2


@pytest.mark.asyncio
async def test_price_alert_without_crossing():
    provider = FixedPriceProvider(0.04)
    config = {"token_mint": "LYNmint", "price_threshold": {"above": 0.05, "below": 0.03}}

    result = await PriceAlertRunner(provider).execute(_task("price-alert", config))

    assert result["alert"] is False
    assert result["alerts"] == []


@pytest.mark.asyncio
async def test_runner_rejects_invalid_config():
    with pytest.raises(InvalidTaskConfigError):
        await PriceAlertRunner(FixedPriceProvider(1.0)).execute(_task("price-alert", {}))


@pytest.mark.asyncio
async def test_security_scan_skips_failing_targets():
    class FlakyProvider(SimulatedDataProvider):
        async def check_url(self, url):
            if "bad" in url:
                raise ConnectionError("unreachable")
            return {"safe": False, "threats": ["phishing"]}

    config = {"urls": ["https://bad.example", "https://phish.example"]}
    result = await SecurityScanRunner(FlakyProvider(seed=3)).execute(
        _task("security-scan", config)
    )

    assert [s["target"] for s in result["scanned"]] == ["https://phish.example"]
    assert result["alert"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "task_type,config",
    [
        ("security-scan", {"urls": ["https://example.com"], "wallets": ["W1"]}),
        ("wallet-monitor", {"wallet_address": "W1", "track_tokens": ["SOL"]}),
        ("price-alert", {"token_mint": "LYNmint"}),
        ("auto-trade", {"strategy": "grid"}),
        ("threat-hunter", {}),
        ("portfolio-tracker", {"portfolio_address": "W1", "tracking_tokens": ["LYN"]}),
        ("smart-contract-audit", {"contract_addresses": ["C1"]}),
        ("defi-monitor", {"protocols": ["raydium"]}),
        ("nft-tracker", {"nft_collections": ["degods"]}),
        ("governance-monitor", {"dao_addresses": ["D1"]}),
    ],
)
async def test_simulated_runners_return_alert_signal(task_type, config):
    registry = RunnerRegistry.from_defaults(SimulatedDataProvider(seed=42))
    result = await Dispatcher(registry).dispatch(_task(task_type, config))

    assert isinstance(result["alert"], bool)


def test_validate_task_config():
    stored = validate_task_config("price-alert", {"token_mint": "LYNmint"})
    assert stored["token_symbol"] == "LYN"
    assert "type" not in stored

    with pytest.raises(InvalidTaskConfigError):
        validate_task_config("wallet-monitor", {})
    with pytest.raises(InvalidTaskConfigError):
        validate_task_config("price-alert", {"token_mint": "x", "leverage": 10})
    with pytest.raises(InvalidTaskConfigError):
        validate_task_config("auto-trade", {"simulated": False})
    with pytest.raises(InvalidTaskConfigError):
        validate_task_config("price-alert", {"type": "auto-trade", "token_mint": "x"})
