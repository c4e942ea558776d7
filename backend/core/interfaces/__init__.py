# Interfaces for external integrations
from .services import BillingProvider

__all__ = ["BillingProvider"]
