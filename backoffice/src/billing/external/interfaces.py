"""
Gateway Interfaces

Abstract interface shared by the payment gateway clients so subscription
management does not care which provider a tenant is billed through.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Optional


class BillingGatewayInterface(ABC):
    """Interface for recurring billing gateways."""

    provider: str

    @abstractmethod
    async def create_customer(self, *, tenant_id: str, name: str, email: Optional[str], tax_id: Optional[str] = None) -> str:
        """Create a customer and return its gateway id."""
        pass

    @abstractmethod
    async def create_subscription(
        self,
        *,
        customer_id: str,
        tenant_id: str,
        description: str,
        value: Decimal,
        price_id: Optional[str] = None,
        billing_type: str = 'UNDEFINED',
    ) -> Dict:
        """Create a recurring subscription, returning at least {'id': ...}."""
        pass

    @abstractmethod
    async def cancel_subscription(self, external_id: str) -> Dict:
        """Cancel a subscription on the gateway."""
        pass

    @abstractmethod
    async def check_connection(self) -> Dict:
        """Make a cheap authenticated call, returning details for the admin UI."""
        pass

    async def aclose(self) -> None:
        """Release network resources."""
        return None
