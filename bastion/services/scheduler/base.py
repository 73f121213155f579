"""
Bastion - Periodic Job Base Class
=================================

Base class for every job the scheduler runs.

Author: Bastion Maintainers
"""

from abc import ABC, abstractmethod
from typing import Any, Dict


class PeriodicJob(ABC):
    """
    Abstract base class for periodic jobs.

    Subclasses set `name` and `interval` and implement run().
    """

    # Job name for logging (override in subclass)
    name: str = "Unknown Job"

    # Seconds between runs (override in subclass)
    interval: float = 60.0

    async def should_run(self) -> bool:
        """
        Check if this job should run this time round.

        Override to skip a run when there is nothing to do.
        """
        return True

    @abstractmethod
    async def run(self) -> Dict[str, Any]:
        """
        Execute the job.

        Returns:
            Dict with job results for logging. Should include at minimum:
            - "success": bool
            - Any other relevant stats (e.g., "removed": 5)
        """
        pass

    def format_result(self, result: Dict[str, Any]) -> str:
        """
        Format the job result for the run log.

        Args:
            result: The dict returned by run()

        Returns:
            Short string describing the result (e.g., "3 removed")
        """
        if not result.get("success", False):
            return "failed"

        # Try common result keys
        if "removed" in result:
            return f"{result['removed']} removed"
        if "published" in result:
            return f"{result['published']} published"
        if "created" in result:
            return f"{result['created']} created"
        if "purged" in result:
            return f"{result['purged']} purged"

        return "done"


__all__ = ["PeriodicJob"]
