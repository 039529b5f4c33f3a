from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session
from datetime import timedelta

from ..database import get_db
from ..limiter import limiter
from ..models.admin import Admin
from ..schemas.auth import TokenResponse, AdminProfileResponse
from ..utils.helpers import log_system_event, utcnow
from ..utils.security import verify_password, create_access_token, get_current_user

router = APIRouter(prefix="/auth", tags=["Authentication"])

MAX_LOGIN_ATTEMPTS = 5
LOCKOUT_MINUTES = 30

_BAD_CREDENTIALS = "Incorrect username or password"


def _record_failure(db: Session, admin: Admin, address: str):
    """Count a failed attempt; the fifth in a row locks the account"""
    admin.login_attempts = (admin.login_attempts or 0) + 1
    if admin.login_attempts >= MAX_LOGIN_ATTEMPTS:
        admin.locked_until = utcnow() + timedelta(minutes=LOCKOUT_MINUTES)
        log_system_event(
            db, "WARNING", "auth", "admin_locked",
            f"Admin {admin.username} locked for {LOCKOUT_MINUTES} minutes",
            details={"address": address, "attempts": admin.login_attempts},
            user_id=admin.id
        )
    db.commit()


# Dashboard login; the portal itself never authenticates devices this way
@router.post("/login", response_model=TokenResponse)
@limiter.limit("10/minute")
async def login(request: Request, form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    address = request.client.host if request.client else None
    admin = db.query(Admin).filter(Admin.username == form_data.username).first()
    if not admin:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_BAD_CREDENTIALS)

    if admin.locked_until and admin.locked_until > utcnow():
        raise HTTPException(
            status_code=status.HTTP_423_LOCKED,
            detail=f"Account locked until {admin.locked_until}"
        )

    if not admin.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated"
        )

    if not verify_password(form_data.password, admin.password_hash):
        _record_failure(db, admin, address)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_BAD_CREDENTIALS)

    admin.login_attempts = 0
    admin.last_login = utcnow()
    admin.locked_until = None
    log_system_event(
        db, "INFO", "auth", "admin_login",
        f"Admin {admin.username} logged in",
        details={"address": address},
        user_id=admin.id
    )
    db.commit()

    return TokenResponse(
        access_token=create_access_token(data={"sub": admin.username, "role": admin.role}),
        token_type="bearer",
        role=admin.role,
        username=admin.username,
        full_name=admin.full_name
    )


@router.get("/me", response_model=AdminProfileResponse)
async def get_me(current_user: Admin = Depends(get_current_user)):
    return current_user
