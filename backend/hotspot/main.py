from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import logging
import os

from .config import settings
from .database import engine, Base
from .exceptions import GatewayError
from .runtime import build_runtime

# Import all models (required for SQLAlchemy to create tables)
from .models import (
    Admin, Session, Rate, Voucher, Bridge, Vlan, HotspotScope,
    WirelessSettings, SystemConfig, SystemLog
)

# Import routes
from .routes import auth, session, coins, vouchers, admin, portal


def setup_logging():
    """Console plus file logging, configured once per process"""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(settings.LOG_FILE),
            logging.StreamHandler()
        ]
    )


setup_logging()
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Admission control and network state synchronization for a coin/voucher WiFi hotspot",
    version="1.0.0",
    docs_url="/api/docs" if settings.ENABLE_API_DOCS else None,
    redoc_url="/api/redoc" if settings.ENABLE_API_DOCS else None,
    openapi_url="/api/openapi.json" if settings.ENABLE_API_DOCS else None
)

# Built on startup unless something (tests) already installed one
app.state.runtime = None

if settings.ENABLE_API_DOCS:
    print("📚 API Documentation: ENABLED (ensure this is disabled in production!)")
else:
    print("📚 API Documentation: DISABLED (production mode)")

# Rate Limiter
from .limiter import limiter

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
print(f"⏱️ Rate limiting: Enabled ({settings.RATE_LIMIT_STORAGE_URI})")


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.name, "detail": exc.message}
    )


# Captive portal runs innermost so every route sees request.state.hardware_id
from .middleware.captive_portal import CaptivePortalMiddleware
app.add_middleware(CaptivePortalMiddleware)
print("🌐 Captive portal middleware enabled")

# Security Headers Middleware
from .middleware.security import SecurityHeadersMiddleware
app.add_middleware(SecurityHeadersMiddleware)
print("🔒 Security headers middleware enabled")

# CORS Middleware - admin dashboard origins
ALLOWED_ORIGINS = settings.origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
    allow_headers=["*"],
    max_age=3600,
)
print(f"🌐 CORS: {len(ALLOWED_ORIGINS)} origins allowed")

# Portal static assets
PORTAL_ASSETS = os.path.join(settings.PORTAL_DIR, "assets")
if os.path.isdir(PORTAL_ASSETS):
    app.mount("/assets", StaticFiles(directory=PORTAL_ASSETS), name="assets")

# Include routers
app.include_router(auth.router, prefix="/api")
app.include_router(session.router, prefix="/api")
app.include_router(coins.router, prefix="/api")
app.include_router(vouchers.router, prefix="/api")
app.include_router(admin.router, prefix="/api")


@app.get("/api/health")
async def health_check():
    runtime = app.state.runtime
    return {
        "status": "healthy",
        "environment": settings.APP_ENV,
        "database": "connected",
        "ticker": bool(runtime and runtime.ticker.running),
        "sweeper": bool(runtime and runtime.sweeper.running)
    }


# Portal page and SPA catch-all go last
app.include_router(portal.router)


@app.on_event("startup")
async def startup_event():
    """Create tables, rebuild network state, start background loops"""
    Base.metadata.create_all(bind=engine)
    print(f"✅ {settings.APP_NAME} Started Successfully")
    print(f"📍 Environment: {settings.APP_ENV}")
    print(f"🔗 Database: Connected")

    if app.state.runtime is None:
        app.state.runtime = build_runtime()
    await app.state.runtime.start()
    logger.info(f"🚀 Portal host {settings.PORTAL_HOST}, LAN {settings.LAN_INTERFACE}, WAN {settings.WAN_INTERFACE}")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    if app.state.runtime is not None:
        await app.state.runtime.stop()

    print(f"🛑 {settings.APP_NAME} Shutting Down...")
