"""Admin API: modular routers under /admin, guarded by X-Admin-Secret."""
from fastapi import APIRouter

from coursepay.admin.routers import payments, payouts, settings

admin_router = APIRouter(prefix="/admin", tags=["admin"])

admin_router.include_router(payments.router, prefix="/payments", tags=["admin-payments"])
admin_router.include_router(settings.router, prefix="/settings", tags=["admin-settings"])
admin_router.include_router(payouts.router, prefix="/payouts", tags=["admin-payouts"])
