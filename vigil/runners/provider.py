"""Market, chain and threat-intel lookups used by the built-in runners.

Runners talk to the outside world only through a :class:`DataProvider`, so
production deployments can plug real clients in while tests and demos use
:class:`SimulatedDataProvider`.
"""

import random
import string
from datetime import timedelta
from typing import Any, Dict, List, Protocol

from ..lib.utils import to_iso, utcnow


class DataProvider(Protocol):
    async def get_market_data(self, token_mint: str) -> Dict[str, float]: ...

    async def get_wallet_balance(self, address: str) -> float: ...

    async def get_recent_transactions(
        self, address: str, limit: int = 10
    ) -> List[Dict[str, Any]]: ...

    async def get_token_balance(self, address: str, token_mint: str) -> float: ...

    async def check_url(self, url: str) -> Dict[str, Any]: ...

    async def query_threat_source(self, source: str) -> List[Dict[str, Any]]: ...

    async def audit_contract(self, address: str) -> Dict[str, Any]: ...

    async def get_protocol_data(self, protocol: str) -> Dict[str, Any]: ...

    async def get_nft_collection(self, collection: str) -> Dict[str, float]: ...

    async def get_active_proposals(self, dao_address: str) -> List[Dict[str, Any]]: ...


class SimulatedDataProvider:
    """Random mock data, shaped like the real feeds.

    Args:
        seed: Seed for reproducible output
    """

    def __init__(self, seed: int | None = None):
        self._random = random.Random(seed)

    def _token(self, length: int = 6) -> str:
        alphabet = string.ascii_lowercase + string.digits
        return "".join(self._random.choice(alphabet) for _ in range(length))

    async def get_market_data(self, token_mint: str) -> Dict[str, float]:
        return {
            "price": round(0.038 + self._random.random() * 0.01, 6),
            "volume_24h": self._random.random() * 1_000_000,
            "market_cap": self._random.random() * 50_000_000,
            "change_24h": (self._random.random() - 0.5) * 20,
        }

    async def get_wallet_balance(self, address: str) -> float:
        return round(self._random.random() * 100, 4)

    async def get_recent_transactions(
        self, address: str, limit: int = 10
    ) -> List[Dict[str, Any]]:
        now = utcnow()
        transactions = []
        for _ in range(self._random.randint(0, limit)):
            pre = self._random.randint(1, 10) * 1_000_000_000
            post = max(0, pre - self._random.randint(0, 6) * 1_000_000_000)
            transactions.append(
                {
                    "signature": self._token(32),
                    "block_time": to_iso(
                        now - timedelta(minutes=self._random.randint(0, 600))
                    ),
                    "pre_balance": pre,
                    "post_balance": post,
                    "err": None if self._random.random() > 0.05 else "failed",
                }
            )
        return transactions

    async def get_token_balance(self, address: str, token_mint: str) -> float:
        return round(self._random.random() * 10_000, 2)

    async def check_url(self, url: str) -> Dict[str, Any]:
        safe = self._random.random() > 0.1
        return {
            "safe": safe,
            "threats": [] if safe else ["phishing"],
            "score": self._random.randint(80, 100) if safe else self._random.randint(0, 40),
        }

    async def query_threat_source(self, source: str) -> List[Dict[str, Any]]:
        if self._random.random() <= 0.8:
            return []
        return [
            {
                "source": source,
                "type": "malicious_url",
                "indicator": f"suspicious-{self._token()}.com",
                "severity": "medium",
                "confidence": 85,
            }
        ]

    async def audit_contract(self, address: str) -> Dict[str, Any]:
        vulnerable = self._random.random() > 0.9
        return {
            "vulnerabilities": [
                {
                    "contract": address,
                    "type": "reentrancy",
                    "severity": "high",
                    "description": "Potential reentrancy vulnerability detected",
                }
            ]
            if vulnerable
            else [],
            "risk_score": 75 if vulnerable else 15,
        }

    async def get_protocol_data(self, protocol: str) -> Dict[str, Any]:
        return {
            "tvl": self._random.random() * 1_000_000,
            "apy": self._random.random() * 100,
            "risk": "high" if self._random.random() > 0.7 else "medium",
            "liquidity": self._random.random() * 500_000,
            "risks": ["Impermanent loss risk"] if self._random.random() > 0.8 else [],
        }

    async def get_nft_collection(self, collection: str) -> Dict[str, float]:
        return {
            "floor_price": self._random.random() * 10,
            "change_24h": (self._random.random() - 0.5) * 40,
            "volume_24h": self._random.random() * 1000,
        }

    async def get_active_proposals(self, dao_address: str) -> List[Dict[str, Any]]:
        if self._random.random() <= 0.7:
            return []
        ends = utcnow() + timedelta(seconds=self._random.random() * 7 * 24 * 3600)
        return [
            {
                "dao": dao_address,
                "proposal_id": f"prop_{self._token()}",
                "title": "Update protocol parameters",
                "status": "active",
                "voting_ends": to_iso(ends),
            }
        ]
