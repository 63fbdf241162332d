"""
API Routes
"""
from fastapi import APIRouter

from booking_engine.api.routes.shipments import router as shipments_router
from booking_engine.api.routes.wallets import router as wallets_router
from booking_engine.api.routes.pricing import router as pricing_router
from booking_engine.api.routes.parts import router as parts_router
from booking_engine.api.routes.network import router as network_router
from booking_engine.api.routes.carrier import router as carrier_router

router = APIRouter()

router.include_router(shipments_router, prefix="/shipments", tags=["Shipments"])
router.include_router(wallets_router, prefix="/wallets", tags=["Wallets"])
router.include_router(pricing_router, prefix="/pricing", tags=["Pricing"])
router.include_router(parts_router, prefix="/parts", tags=["Parts"])
router.include_router(network_router, prefix="/network", tags=["Network"])
router.include_router(carrier_router, prefix="/carrier", tags=["Carrier"])
