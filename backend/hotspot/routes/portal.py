from fastapi import APIRouter
from fastapi.responses import HTMLResponse, JSONResponse

from ..config import settings
from ..services.captive_portal import load_portal_page

router = APIRouter(tags=["Portal"])


@router.get("/", response_class=HTMLResponse, include_in_schema=False)
async def portal_index():
    return HTMLResponse(load_portal_page(settings.PORTAL_DIR))


# SPA catch-all; must be registered after every other route
@router.get("/{full_path:path}", include_in_schema=False)
async def portal_catch_all(full_path: str):
    if full_path == "api" or full_path.startswith("api/"):
        return JSONResponse(status_code=404, content={"detail": "Not Found"})
    return HTMLResponse(load_portal_page(settings.PORTAL_DIR))
