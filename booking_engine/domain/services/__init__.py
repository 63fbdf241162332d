"""
Domain Services
"""
from booking_engine.domain.services.pricing_resolver import PricingResolver, PricingAdminService
from booking_engine.domain.services.authorization_index import AuthorizationIndex
from booking_engine.domain.services.wallet_ledger import WalletLedger
from booking_engine.domain.services.wallet_service import WalletService
from booking_engine.domain.services.part_approval_service import PartApprovalService
from booking_engine.domain.services.carrier_client import CarrierClient
from booking_engine.domain.services.booking_orchestrator import BookingOrchestrator
from booking_engine.domain.services.reconciliation_service import ReconciliationService

__all__ = [
    "PricingResolver",
    "PricingAdminService",
    "AuthorizationIndex",
    "WalletLedger",
    "WalletService",
    "PartApprovalService",
    "CarrierClient",
    "BookingOrchestrator",
    "ReconciliationService",
]
