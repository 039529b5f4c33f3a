from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List

from ..database import get_db
from ..models.admin import Admin
from ..runtime import GatewayRuntime, get_runtime
from ..schemas.auth import AdminSessionResponse, AddTimeRequest
from ..services.session_store import SessionStore
from ..utils.helpers import log_system_event
from ..utils.security import require_permission
from ..utils.validators import normalize_mac

router = APIRouter(prefix="/admin", tags=["Admin"])


def _hardware_id(value: str) -> str:
    hardware_id = normalize_mac(value)
    if not hardware_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid hardware id"
        )
    return hardware_id


@router.get("/sessions", response_model=List[AdminSessionResponse])
async def list_sessions(
    db: Session = Depends(get_db),
    current_user: Admin = Depends(require_permission("view_sessions"))
):
    return SessionStore(db).list_all()


@router.post("/sessions/{hardware_id}/time", response_model=AdminSessionResponse)
async def add_session_time(
    hardware_id: str,
    payload: AddTimeRequest,
    db: Session = Depends(get_db),
    runtime: GatewayRuntime = Depends(get_runtime),
    current_user: Admin = Depends(require_permission("add_time"))
):
    return await runtime.admission.add_time(
        db, _hardware_id(hardware_id), payload.minutes * 60, admin_id=current_user.id
    )


@router.delete("/sessions/{hardware_id}")
async def disconnect_session(
    hardware_id: str,
    db: Session = Depends(get_db),
    runtime: GatewayRuntime = Depends(get_runtime),
    current_user: Admin = Depends(require_permission("disconnect"))
):
    hardware_id = _hardware_id(hardware_id)
    await runtime.admission.disconnect(db, hardware_id, admin_id=current_user.id)
    return {"success": True, "hardware_id": hardware_id}


# Manual reconciliation sweep
@router.post("/reconcile")
async def run_reconcile(
    db: Session = Depends(get_db),
    runtime: GatewayRuntime = Depends(get_runtime),
    current_user: Admin = Depends(require_permission("run_reconcile"))
):
    removed = await runtime.sweeper.sweep()
    log_system_event(
        db, "INFO", "admin", "reconcile",
        "Manual reconciliation sweep",
        details=removed,
        user_id=current_user.id
    )
    db.commit()
    return {"success": True, "removed": removed}
