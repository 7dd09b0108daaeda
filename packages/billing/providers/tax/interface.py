"""
Interface for tax engines.
"""

from abc import ABC, abstractmethod
from typing import Optional


class TaxEngineInterface(ABC):
    """Abstract interface for tax computation."""

    @abstractmethod
    async def compute_tax(self, subtotal: int, jurisdiction: Optional[str]) -> int:
        """
        Compute tax owed on a subtotal.

        Args:
            subtotal: Non-negative amount in minor currency units
            jurisdiction: Tax jurisdiction code (e.g. "DE", "US-CA")

        Returns:
            Tax in minor currency units

        Raises:
            TaxComputationError: Tax could not be determined
        """
        pass
