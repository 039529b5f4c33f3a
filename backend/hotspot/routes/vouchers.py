import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..limiter import limiter
from ..models.voucher import Voucher
from ..runtime import GatewayRuntime, get_runtime
from ..schemas.voucher import VoucherRedeemRequest, VoucherRedeemResponse
from ..utils.helpers import log_system_event, utcnow
from .session import require_hardware_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/vouchers", tags=["Vouchers"])


def _release_claim(db: Session, voucher_id: int):
    """Hand a claimed code back when the grant behind it failed"""
    db.query(Voucher).filter(
        Voucher.id == voucher_id,
        Voucher.status == "used"
    ).update({
        Voucher.status: "active",
        Voucher.used_at: None,
        Voucher.used_by_mac: None,
        Voucher.used_by_ip: None
    }, synchronize_session=False)
    db.commit()


@router.post("/redeem", response_model=VoucherRedeemResponse)
@limiter.limit("10/minute")
async def redeem_voucher(
    request: Request,
    payload: VoucherRedeemRequest,
    db: Session = Depends(get_db),
    runtime: GatewayRuntime = Depends(get_runtime)
):
    hardware_id = require_hardware_id(request)
    address = request.state.client_address

    voucher = db.query(Voucher).filter(Voucher.code == payload.code).first()
    if not voucher or voucher.status != "active":
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invalid or already used voucher"
        )

    now = utcnow()
    if voucher.expires_at and voucher.expires_at <= now:
        voucher.status = "expired"
        db.commit()
        raise HTTPException(
            status_code=status.HTTP_410_GONE,
            detail="Voucher has expired"
        )

    if not voucher.minutes or voucher.minutes <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Voucher carries no time"
        )

    # Claim the code first; a second device racing on the same code loses here
    claimed = db.query(Voucher).filter(
        Voucher.id == voucher.id,
        Voucher.status == "active"
    ).update({
        Voucher.status: "used",
        Voucher.used_at: now,
        Voucher.used_by_mac: hardware_id,
        Voucher.used_by_ip: address
    }, synchronize_session=False)
    db.commit()
    if not claimed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invalid or already used voucher"
        )

    try:
        row = await runtime.admission.grant(
            db, hardware_id, address,
            seconds=voucher.minutes * 60,
            paid=voucher.price or 0,
            download_limit=voucher.download_limit or 0,
            upload_limit=voucher.upload_limit or 0,
            session_type="voucher",
            voucher_code=voucher.code
        )
    except Exception:
        _release_claim(db, voucher.id)
        raise

    voucher.session_token = row.token
    log_system_event(
        db, "INFO", "voucher", "voucher_redeemed",
        f"Voucher {voucher.code} redeemed by {hardware_id}",
        details={"minutes": voucher.minutes, "address": address},
        hardware_id=hardware_id
    )
    db.commit()

    logger.info(f"🎟️ Voucher {payload.code} redeemed by {hardware_id} @ {address}")
    return VoucherRedeemResponse(
        success=True,
        hardware_id=hardware_id,
        token=row.token,
        remaining_seconds=row.remaining_seconds
    )
