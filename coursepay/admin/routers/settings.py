import logging

from fastapi import APIRouter, Depends
from sqlmodel import Session

from coursepay.admin.deps import require_admin
from coursepay.core.database import get_db
from coursepay.models import AuditLog
from coursepay.payments.commission import get_platform_commission, set_platform_commission
from coursepay.schemas import CommissionSettingRequest, CommissionSettingResponse

router = APIRouter()
log = logging.getLogger("coursepay.admin")


@router.get("/commission", response_model=CommissionSettingResponse)
def commission_get(_=Depends(require_admin), db: Session = Depends(get_db)):
    return CommissionSettingResponse(commission_percentage=get_platform_commission(db))


@router.put("/commission", response_model=CommissionSettingResponse)
def commission_update(
    body: CommissionSettingRequest,
    _=Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Applies to orders created from now on; settled orders keep their own rate."""
    previous = get_platform_commission(db)
    pct = set_platform_commission(db, body.commission_percentage, updated_by="admin")
    db.add(AuditLog(event="commission_update", detail=f"{previous} -> {pct}"))
    db.commit()
    log.info("Platform commission changed: %s -> %s", previous, pct)
    return CommissionSettingResponse(commission_percentage=pct)
