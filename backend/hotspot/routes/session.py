from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..exceptions import IdentityUnresolved
from ..limiter import limiter
from ..runtime import GatewayRuntime, get_runtime
from ..schemas.session import (
    SessionStartRequest, SessionStartResponse, RestoreRequest, RestoreResponse,
    WhoAmIResponse, SessionStatusResponse
)
from ..services.session_store import SessionStore

router = APIRouter(prefix="/session", tags=["Session"])


def require_hardware_id(request: Request) -> str:
    """Hardware id resolved by the captive portal middleware, or 400"""
    hardware_id = getattr(request.state, "hardware_id", None)
    if not hardware_id:
        raise IdentityUnresolved()
    return hardware_id


def _status(hardware_id: str, row) -> SessionStatusResponse:
    if row is None:
        return SessionStatusResponse(admitted=False, hardware_id=hardware_id)
    return SessionStatusResponse(
        admitted=row.is_active,
        hardware_id=hardware_id,
        remaining_seconds=row.remaining_seconds,
        session_type=row.session_type,
        is_paused=bool(row.is_paused),
        download_limit=row.download_limit or 0,
        upload_limit=row.upload_limit or 0,
        token_expires_at=row.token_expires_at
    )


@router.post("/start", response_model=SessionStartResponse)
@limiter.limit("30/minute")
async def start_session(
    request: Request,
    payload: SessionStartRequest,
    db: Session = Depends(get_db),
    runtime: GatewayRuntime = Depends(get_runtime)
):
    hardware_id = require_hardware_id(request)
    row = await runtime.admission.grant_coins(
        db, hardware_id, request.state.client_address,
        payload.amount_paid, payload.minutes
    )
    return SessionStartResponse(success=True, hardware_id=hardware_id, token=row.token)


@router.post("/restore", response_model=RestoreResponse)
@limiter.limit("20/minute")
async def restore_session(
    request: Request,
    payload: RestoreRequest,
    db: Session = Depends(get_db),
    runtime: GatewayRuntime = Depends(get_runtime)
):
    hardware_id = require_hardware_id(request)
    result = await runtime.migration.restore(
        db, payload.token, hardware_id, request.state.client_address
    )
    return RestoreResponse(
        success=True,
        migrated=result.migrated,
        remaining_seconds=result.remaining_seconds
    )


@router.get("/whoami", response_model=WhoAmIResponse)
async def whoami(request: Request):
    return WhoAmIResponse(
        address=getattr(request.state, "client_address", None),
        hardware_id=getattr(request.state, "hardware_id", None) or "unknown"
    )


@router.get("/status", response_model=SessionStatusResponse)
async def session_status(request: Request, db: Session = Depends(get_db)):
    hardware_id = require_hardware_id(request)
    return _status(hardware_id, SessionStore(db).get(hardware_id))


@router.post("/pause", response_model=SessionStatusResponse)
async def pause_session(
    request: Request,
    db: Session = Depends(get_db),
    runtime: GatewayRuntime = Depends(get_runtime)
):
    hardware_id = require_hardware_id(request)
    row = await runtime.admission.pause(db, hardware_id)
    return _status(hardware_id, row)


@router.post("/resume", response_model=SessionStatusResponse)
async def resume_session(
    request: Request,
    db: Session = Depends(get_db),
    runtime: GatewayRuntime = Depends(get_runtime)
):
    hardware_id = require_hardware_id(request)
    row = await runtime.admission.resume(db, hardware_id, request.state.client_address)
    return _status(hardware_id, row)
