"""Built-in task templates and template instantiation helpers."""

import logging
from typing import Any, Dict, List, Mapping, Tuple

from ..database.base import DatabaseBackend
from ..schemas.task import TaskInput
from ..schemas.template import TaskTemplate, TemplateInput

logger = logging.getLogger(__name__)

_DEFAULT_CHANNELS = {"channels": ["email", "in-app"]}

DEFAULT_TEMPLATES: List[TemplateInput] = [
    TemplateInput(
        name="Basic Website Security Scan",
        description="Comprehensive security scan for websites and web applications",
        type="security-scan",
        default_config={
            "urls": [],
            "scan_interval": 3_600_000,
            "notifications": dict(_DEFAULT_CHANNELS),
        },
        required_fields=["urls"],
        optional_fields=["scan_interval", "notifications"],
        default_frequency="every 6 hours",
        category="Security",
        tags=["security", "website", "vulnerability"],
        is_public=True,
        created_by="system",
    ),
    TemplateInput(
        name="Smart Contract Security Audit",
        description="Automated security audit for smart contracts",
        type="smart-contract-audit",
        default_config={
            "contract_addresses": [],
            "audit_depth": "standard",
            "notifications": dict(_DEFAULT_CHANNELS),
        },
        required_fields=["contract_addresses"],
        optional_fields=["audit_depth", "notifications"],
        default_frequency="daily",
        category="Security",
        tags=["security", "smart-contract", "audit"],
        is_public=True,
        created_by="system",
    ),
    TemplateInput(
        name="Wallet Security Monitor",
        description="Monitor wallet addresses for suspicious activities",
        type="wallet-monitor",
        default_config={
            "wallet_address": "",
            "alert_on_transaction": True,
            "min_transaction_amount": 0.1,
            "track_tokens": ["SOL"],
            "notifications": dict(_DEFAULT_CHANNELS),
        },
        required_fields=["wallet_address"],
        optional_fields=[
            "alert_on_transaction",
            "min_transaction_amount",
            "track_tokens",
            "notifications",
        ],
        default_frequency="every 5 minutes",
        category="Security",
        tags=["security", "wallet", "monitoring"],
        is_public=True,
        created_by="system",
    ),
    TemplateInput(
        name="LYN Token Price Alert",
        description="Monitor LYN token price with customizable thresholds",
        type="price-alert",
        default_config={
            "token_symbol": "LYN",
            "token_mint": "",
            "price_threshold": {"above": 0.05, "below": 0.03, "percent_change": 10},
            "notifications": dict(_DEFAULT_CHANNELS),
        },
        required_fields=["token_mint", "price_threshold"],
        optional_fields=["token_symbol", "notifications"],
        default_frequency="every 5 minutes",
        category="Price Monitoring",
        tags=["price", "lyn", "token", "alert"],
        is_public=True,
        created_by="system",
    ),
    TemplateInput(
        name="Custom Token Price Alert",
        description="Monitor any Solana token price with customizable thresholds",
        type="price-alert",
        default_config={
            "token_mint": "",
            "price_threshold": {"percent_change": 15},
            "notifications": dict(_DEFAULT_CHANNELS),
        },
        required_fields=["token_mint", "price_threshold"],
        optional_fields=["token_symbol", "notifications"],
        default_frequency="every 30 minutes",
        category="Price Monitoring",
        tags=["price", "token", "alert", "custom"],
        is_public=True,
        created_by="system",
    ),
    TemplateInput(
        name="Solana Portfolio Tracker",
        description="Track your Solana wallet portfolio value and performance",
        type="portfolio-tracker",
        default_config={
            "portfolio_address": "",
            "tracking_tokens": [],
            "rebalance_threshold": 20,
            "notifications": dict(_DEFAULT_CHANNELS),
        },
        required_fields=["portfolio_address"],
        optional_fields=["tracking_tokens", "rebalance_threshold", "notifications"],
        default_frequency="every hour",
        category="Portfolio",
        tags=["portfolio", "tracking", "solana", "wallet"],
        is_public=True,
        created_by="system",
    ),
    TemplateInput(
        name="Comprehensive Threat Hunter",
        description="Actively hunt for new threats across multiple intelligence sources",
        type="threat-hunter",
        default_config={
            "threat_sources": ["virustotal", "urlvoid", "phishtank", "malwaredomainlist"],
            "threat_types": ["malicious_url", "phishing", "malware", "suspicious_domain"],
            "confidence_threshold": 70,
            "notifications": dict(_DEFAULT_CHANNELS),
        },
        required_fields=[],
        optional_fields=[
            "threat_sources",
            "threat_types",
            "confidence_threshold",
            "notifications",
        ],
        default_frequency="every 2 hours",
        category="Security",
        tags=["threat", "hunting", "intelligence", "security"],
        is_public=True,
        created_by="system",
    ),
    TemplateInput(
        name="DeFi Protocol Monitor",
        description="Monitor DeFi protocols for yield opportunities and risks",
        type="defi-monitor",
        default_config={
            "protocols": ["raydium", "orca", "serum"],
            "yield_threshold": 20,
            "risk_threshold": "medium",
            "notifications": dict(_DEFAULT_CHANNELS),
        },
        required_fields=["protocols"],
        optional_fields=["yield_threshold", "risk_threshold", "notifications"],
        default_frequency="every 30 minutes",
        category="DeFi",
        tags=["defi", "yield", "protocol", "monitoring"],
        is_public=True,
        created_by="system",
    ),
    TemplateInput(
        name="Solana NFT Collection Tracker",
        description="Track floor prices and volume for Solana NFT collections",
        type="nft-tracker",
        default_config={
            "nft_collections": [],
            "floor_price_alerts": True,
            "volume_alerts": True,
            "change_threshold": 15,
            "notifications": dict(_DEFAULT_CHANNELS),
        },
        required_fields=["nft_collections"],
        optional_fields=[
            "floor_price_alerts",
            "volume_alerts",
            "change_threshold",
            "notifications",
        ],
        default_frequency="every hour",
        category="NFT",
        tags=["nft", "collection", "floor-price", "tracking"],
        is_public=True,
        created_by="system",
    ),
    TemplateInput(
        name="DAO Governance Monitor",
        description="Monitor DAO proposals and voting deadlines",
        type="governance-monitor",
        default_config={
            "dao_addresses": [],
            "voting_reminders": True,
            "reminder_threshold": 24,
            "notifications": dict(_DEFAULT_CHANNELS),
        },
        required_fields=["dao_addresses"],
        optional_fields=["voting_reminders", "reminder_threshold", "notifications"],
        default_frequency="every 2 hours",
        category="Governance",
        tags=["dao", "governance", "voting", "proposals"],
        is_public=True,
        created_by="system",
    ),
]

# Field descriptions used to build config forms.
FIELD_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "urls": {
        "type": "array",
        "description": "List of URLs to scan for security vulnerabilities",
        "placeholder": "https://example.com",
    },
    "wallet_address": {
        "type": "string",
        "description": "Solana wallet address to monitor",
        "placeholder": "EPCzpDDs4dNJvBEmJ1pvBN4tfCVNxZqJ7sTcHcepHdKT",
        "validation": {"min_length": 32, "max_length": 44},
    },
    "contract_addresses": {
        "type": "array",
        "description": "Smart contract addresses to audit",
        "placeholder": "Contract address",
    },
    "token_mint": {
        "type": "string",
        "description": "Token mint address",
        "placeholder": "Token mint address",
    },
    "price_threshold": {
        "type": "object",
        "description": "Price alert thresholds",
        "placeholder": '{"above": 0.05, "below": 0.03, "percent_change": 10}',
    },
    "portfolio_address": {
        "type": "string",
        "description": "Portfolio wallet address to track",
        "placeholder": "Wallet address",
    },
    "nft_collections": {
        "type": "array",
        "description": "NFT collection addresses to track",
        "placeholder": "Collection address",
    },
    "dao_addresses": {
        "type": "array",
        "description": "DAO addresses to monitor for governance",
        "placeholder": "DAO address",
    },
    "protocols": {
        "type": "array",
        "description": "DeFi protocol names to monitor",
        "placeholder": "Protocol name",
    },
}

OVERRIDE_FIELDS = frozenset(
    {
        "name",
        "description",
        "config",
        "frequency",
        "cron_expression",
        "priority",
        "dependencies",
        "retry_config",
    }
)


async def seed_default_templates(db: DatabaseBackend) -> int:
    """Insert built-in templates that are not stored yet.

    Idempotent per (type, name).

    Returns:
        Number of templates created
    """
    created = 0
    for template in DEFAULT_TEMPLATES:
        existing = await db.list_templates(type=template["type"], name=template["name"])
        if existing:
            logger.debug(f"Template already exists: {template['name']}")
            continue
        await db.create_template(template)
        logger.info(f"Created template: {template['name']}")
        created += 1
    return created


def missing_required_fields(
    template: TaskTemplate, config: Mapping[str, Any]
) -> List[str]:
    """Required fields that are empty in both the overrides and the defaults."""
    return [
        field
        for field in template["required_fields"]
        if not config.get(field) and not template["default_config"].get(field)
    ]


def recommendations_for(template: TaskTemplate, overrides: Mapping[str, Any]) -> List[str]:
    config = overrides.get("config") or {}
    tips = []
    if template["type"] == "price-alert" and not overrides.get("frequency"):
        tips.append(
            'Consider using "every 5 minutes" frequency for price alerts '
            "to catch rapid price movements"
        )
    if template["type"] == "security-scan" and not overrides.get("retry_config"):
        tips.append(
            "Consider adding retry configuration for security scans "
            "to handle network issues"
        )
    if template["type"] == "wallet-monitor" and not config.get(
        "alert_on_transaction", template["default_config"].get("alert_on_transaction")
    ):
        tips.append("Enable transaction alerts to monitor wallet activity in real-time")
    return tips


def build_task_input(
    template: TaskTemplate, user_id: str, overrides: Mapping[str, Any]
) -> Tuple[TaskInput | None, List[str], List[str]]:
    """Merge a template with user overrides.

    Args:
        template: Source template
        user_id: Owner of the new task
        overrides: Any of ``name``, ``description``, ``config`` (merged over
            ``default_config``), ``frequency``, ``cron_expression``,
            ``priority``, ``dependencies``, ``retry_config``

    Returns:
        ``(task_input, missing_required_fields, recommendations)``;
        ``task_input`` is None when required fields are missing.

    Raises:
        ValueError: On unknown override keys
    """
    unknown = set(overrides) - OVERRIDE_FIELDS
    if unknown:
        raise ValueError(f"Unknown template overrides: {sorted(unknown)}")

    custom = dict(overrides.get("config") or {})
    missing = missing_required_fields(template, custom)
    tips = recommendations_for(template, overrides)
    if missing:
        return None, missing, tips

    task_input = TaskInput(
        user_id=user_id,
        name=overrides.get("name") or template["name"],
        description=overrides.get("description") or template["description"],
        type=template["type"],
        frequency=overrides.get("frequency") or template["default_frequency"],
        cron_expression=overrides.get("cron_expression"),
        priority=overrides.get("priority") or "normal",
        dependencies=list(overrides.get("dependencies") or []),
        retry_config=overrides.get("retry_config"),
        template_id=template["id"],
        config={**template["default_config"], **custom},
    )
    return task_input, [], tips


def template_config_schema(template: TaskTemplate) -> Dict[str, List[Dict[str, Any]]]:
    """Describe a template's fields for form generation."""
    required = [
        {"field": field, **FIELD_SCHEMAS.get(field, {"type": "string"})}
        for field in template["required_fields"]
    ]
    optional = [
        {
            "field": field,
            **FIELD_SCHEMAS.get(field, {"type": "string"}),
            "default_value": template["default_config"].get(field),
        }
        for field in template["optional_fields"]
    ]
    return {"required": required, "optional": optional}
