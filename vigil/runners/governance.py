from datetime import timedelta
from typing import Any, Dict

from ..common.errors import TaskRunnerError
from ..core.dispatcher import runner
from ..lib.utils import from_iso, utcnow
from ..schemas.task import Task
from .base import ProviderRunner


@runner("governance-monitor")
class GovernanceMonitorRunner(ProviderRunner):
    """List active DAO proposals and remind before voting closes."""

    async def execute(self, task: Task) -> Dict[str, Any]:
        config = self.config_for(task)
        result: Dict[str, Any] = {
            "daos_monitored": len(config.dao_addresses),
            "active_proposals": [],
            "voting_reminders": [],
            "alert": False,
        }
        horizon = utcnow() + timedelta(hours=config.reminder_threshold)

        try:
            for dao in config.dao_addresses:
                proposals = await self.provider.get_active_proposals(dao)
                result["active_proposals"].extend(proposals)

                if not config.voting_reminders:
                    continue
                ending = [p for p in proposals if from_iso(p["voting_ends"]) < horizon]  # type: ignore
                if ending:
                    result["alert"] = True
                    result["voting_reminders"].extend(
                        f'Voting ends soon for "{p["title"]}" in {dao}' for p in ending
                    )
        except Exception as e:
            raise TaskRunnerError(f"Governance monitoring failed: {e}") from e

        return result
