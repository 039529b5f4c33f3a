import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from ..config import settings
from ..runtime import GatewayRuntime, get_runtime
from ..schemas.coin import CoinClaimResponse, CreditRequest, CreditResponse
from ..services.credit_events import CreditEvent
from .session import require_hardware_id

router = APIRouter(prefix="/coins", tags=["Coins"])


def verify_bridge_key(x_bridge_key: Optional[str] = Header(None)):
    """Only the coin acceptor bridge may publish credits"""
    if not settings.COIN_BRIDGE_KEY or not x_bridge_key or not secrets.compare_digest(
        x_bridge_key, settings.COIN_BRIDGE_KEY
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bridge key"
        )


# Portal device takes the coin slot
@router.post("/claim", response_model=CoinClaimResponse)
async def claim_slot(request: Request, runtime: GatewayRuntime = Depends(get_runtime)):
    hardware_id = require_hardware_id(request)
    runtime.credit_channel.claim(hardware_id, request.state.client_address)
    return CoinClaimResponse(
        success=True,
        hardware_id=hardware_id,
        expires_in=runtime.credit_channel.claim_timeout
    )


@router.post("/release")
async def release_slot(request: Request, runtime: GatewayRuntime = Depends(get_runtime)):
    hardware_id = require_hardware_id(request)
    return {"success": runtime.credit_channel.release(hardware_id)}


# Coin acceptor bridge reports an accepted coin
@router.post("/credit", response_model=CreditResponse, dependencies=[Depends(verify_bridge_key)])
async def publish_credit(payload: CreditRequest, runtime: GatewayRuntime = Depends(get_runtime)):
    claim = runtime.credit_channel.publish(
        CreditEvent(amount=payload.amount, minutes=payload.derived_minutes)
    )
    return CreditResponse(success=True, queued=True, hardware_id=claim.hardware_id)
