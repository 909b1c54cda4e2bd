"""Typed task configuration.

Every task type has its own config model; ``TaskConfig`` is the tagged
union over them, discriminated by ``type``. Configs are validated when a
task is created so that unknown types or malformed settings never reach
the runners.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..common.errors import InvalidTaskConfigError


class NotificationSettings(BaseModel):
    """Where alerts for a task should be delivered"""

    model_config = ConfigDict(extra="allow")

    channels: List[str] = Field(default_factory=lambda: ["in-app"])
    email: Optional[str] = None
    discord: Optional[str] = None
    telegram: Optional[str] = None


class _BaseConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    notifications: Optional[NotificationSettings] = None


class PriceThreshold(BaseModel):
    above: Optional[float] = None
    below: Optional[float] = None
    percent_change: Optional[float] = Field(None, ge=0)


class SecurityScanConfig(_BaseConfig):
    type: Literal["security-scan"] = "security-scan"
    urls: List[str] = Field(default_factory=list)
    wallets: List[str] = Field(default_factory=list)
    contracts: List[str] = Field(default_factory=list)
    scan_interval: Optional[int] = Field(None, gt=0)


class WalletMonitorConfig(_BaseConfig):
    type: Literal["wallet-monitor"] = "wallet-monitor"
    wallet_address: str = Field(..., min_length=1)
    track_tokens: List[str] = Field(default_factory=list)
    alert_on_transaction: bool = False
    min_transaction_amount: Optional[float] = Field(None, ge=0)


class PriceAlertConfig(_BaseConfig):
    type: Literal["price-alert"] = "price-alert"
    token_mint: str = Field(..., min_length=1)
    token_symbol: str = "LYN"
    price_threshold: PriceThreshold = Field(default_factory=PriceThreshold)


class AutoTradeConfig(_BaseConfig):
    type: Literal["auto-trade"] = "auto-trade"
    strategy: Literal["dca", "grid", "arbitrage"] = "dca"
    token_mint: Optional[str] = None
    amount: Optional[float] = Field(None, gt=0)
    interval: Optional[str] = None
    grid_levels: List[float] = Field(
        default_factory=lambda: [0.040, 0.042, 0.044, 0.046]
    )
    # Trading tasks never place real orders.
    simulated: Literal[True] = True


class ThreatHunterConfig(_BaseConfig):
    type: Literal["threat-hunter"] = "threat-hunter"
    threat_sources: List[str] = Field(
        default_factory=lambda: ["virustotal", "urlvoid", "phishtank"]
    )
    threat_types: List[str] = Field(default_factory=list)
    confidence_threshold: int = Field(70, ge=0, le=100)


class PortfolioTrackerConfig(_BaseConfig):
    type: Literal["portfolio-tracker"] = "portfolio-tracker"
    portfolio_address: str = Field(..., min_length=1)
    tracking_tokens: List[str] = Field(default_factory=list)
    rebalance_threshold: float = Field(20.0, ge=0)


class SmartContractAuditConfig(_BaseConfig):
    type: Literal["smart-contract-audit"] = "smart-contract-audit"
    contract_addresses: List[str] = Field(default_factory=list)
    audit_depth: Literal["quick", "standard", "deep"] = "standard"


class DefiMonitorConfig(_BaseConfig):
    type: Literal["defi-monitor"] = "defi-monitor"
    protocols: List[str] = Field(default_factory=list)
    yield_threshold: float = Field(50.0, ge=0)
    risk_threshold: Literal["low", "medium", "high"] = "medium"


class NftTrackerConfig(_BaseConfig):
    type: Literal["nft-tracker"] = "nft-tracker"
    nft_collections: List[str] = Field(default_factory=list)
    floor_price_alerts: bool = True
    volume_alerts: bool = False
    change_threshold: float = Field(20.0, ge=0)


class GovernanceMonitorConfig(_BaseConfig):
    type: Literal["governance-monitor"] = "governance-monitor"
    dao_addresses: List[str] = Field(default_factory=list)
    voting_reminders: bool = True
    reminder_threshold: int = Field(24, gt=0)


TaskConfig = Annotated[
    Union[
        SecurityScanConfig,
        WalletMonitorConfig,
        PriceAlertConfig,
        AutoTradeConfig,
        ThreatHunterConfig,
        PortfolioTrackerConfig,
        SmartContractAuditConfig,
        DefiMonitorConfig,
        NftTrackerConfig,
        GovernanceMonitorConfig,
    ],
    Field(discriminator="type"),
]

_task_config_adapter: TypeAdapter[Any] = TypeAdapter(TaskConfig)


def parse_task_config(task_type: str, config: Dict[str, Any] | None) -> Any:
    """Validate ``config`` against the model for ``task_type``.

    Raises:
        InvalidTaskConfigError: On unknown types or invalid fields.
    """
    payload = dict(config or {})
    declared = payload.pop("type", task_type)
    if declared != task_type:
        raise InvalidTaskConfigError(
            task_type, f"config declares type '{declared}'"
        )

    try:
        return _task_config_adapter.validate_python({**payload, "type": task_type})
    except ValidationError as e:
        raise InvalidTaskConfigError(task_type, _format_errors(e)) from e


def validate_task_config(
    task_type: str, config: Dict[str, Any] | None
) -> Dict[str, Any]:
    """Validate and normalise a config, returning the stored dict form.

    The discriminator is dropped from the returned dict; it lives in the
    task's ``type`` column.
    """
    model = parse_task_config(task_type, config)
    data = model.model_dump(exclude_none=True)
    data.pop("type", None)
    return data


def _format_errors(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item["loc"])
        parts.append(f"{loc}: {item['msg']}" if loc else item["msg"])
    return "; ".join(parts)
