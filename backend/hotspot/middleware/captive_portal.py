"""Captive Portal Middleware

Resolves the requesting device once, follows it across address changes, and
answers OS connectivity probes before any route runs.
"""
import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response

from ..config import settings
from ..services.captive_portal import classify_probe, host_of, is_canonical_host, load_portal_page
from ..services.session_store import SessionStore

logger = logging.getLogger(__name__)


class CaptivePortalMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        runtime = request.app.state.runtime
        address = request.client.host if request.client else None

        hardware_id = await runtime.resolver.resolve(address) if address else None
        request.state.client_address = address
        request.state.hardware_id = hardware_id

        admitted = False
        if hardware_id:
            db = runtime.session_factory()
            try:
                await runtime.admission.reapply_if_moved(db, hardware_id, address)
                row = SessionStore(db).get(hardware_id)
                admitted = row is not None and row.is_active
            finally:
                db.close()
        request.state.admitted = admitted

        host = host_of(request.headers.get("host"))
        probe = classify_probe(host, request.url.path)
        if probe is not None:
            if not admitted:
                return HTMLResponse(load_portal_page(settings.PORTAL_DIR), status_code=200)
            status_code, body = probe
            if body is None:
                return Response(status_code=status_code)
            return PlainTextResponse(body, status_code=status_code)

        if (
            is_canonical_host(host, settings.portal_hosts_list)
            or request.url.path.startswith("/api/")
            or request.method == "OPTIONS"
        ):
            return await call_next(request)

        logger.debug(f"↪️ Redirecting {address} from {host}{request.url.path} to portal")
        return RedirectResponse(url=f"http://{settings.PORTAL_HOST}/", status_code=302)
