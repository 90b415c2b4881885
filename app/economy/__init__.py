from app.economy.billing.service import BillingService
from app.economy.entitlements.service import EntitlementService

__all__ = [
    "BillingService",
    "EntitlementService",
]
