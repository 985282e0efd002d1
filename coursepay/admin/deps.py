"""Admin auth: X-Admin-Secret header (or admin_secret query) with constant-time comparison."""
from fastapi import Header, HTTPException, Query

from coursepay.core.config import settings
from coursepay.core.security import constant_time_equals


def require_admin(
    x_admin_secret: str | None = Header(None, alias="X-Admin-Secret"),
    admin_secret: str | None = Query(None, description="Admin secret"),
) -> None:
    expected = (settings.admin_secret or "").strip()
    if not expected:
        raise HTTPException(status_code=503, detail="Admin API is not configured (ADMIN_SECRET missing).")
    secret = (x_admin_secret or admin_secret) or ""
    if not constant_time_equals(secret, expected):
        raise HTTPException(status_code=403, detail="Forbidden.")
