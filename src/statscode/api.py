from __future__ import annotations

"""Local read-only HTTP API over computed stats."""

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from .certificate import Certificate, render_html, render_svg, verify
from .errors import UnknownSessionError
from .service import StatsCodeService


logger = logging.getLogger(__name__)

API_VERSION = "0.1"


class CertificatePayload(BaseModel):
    """Certificate document as exported by `statscode export --format json`."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1, max_length=200)
    generated_at: str = Field(alias="generatedAt", min_length=1)
    stats: dict[str, Any]
    verification_hash: str = Field(alias="verificationHash", min_length=1)


def create_app(service: StatsCodeService) -> FastAPI:
    app = FastAPI(title="StatsCode Local API", version=API_VERSION)

    @app.middleware("http")
    async def internal_error_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        try:
            return await call_next(request)
        except Exception as exc:  # noqa: BLE001
            logger.error("api error on %s: %s", request.url.path, exc.__class__.__name__, exc_info=exc)
            return JSONResponse(
                status_code=500,
                content={"code": "INTERNAL_SERVER_ERROR", "message": "Internal server error"},
            )

    @app.get("/v1/health")
    def health() -> dict[str, Any]:
        return {"status": "ok", "version": API_VERSION, "storeInitialized": service.store.initialized}

    @app.get("/v1/stats")
    def stats() -> dict[str, Any]:
        return service.compute_stats().to_dict()

    @app.get("/v1/badges")
    def badges() -> list[dict[str, Any]]:
        return service.badge_report()

    @app.get("/v1/sessions")
    def sessions(limit: int = Query(default=50, ge=1, le=1000)) -> list[dict[str, Any]]:
        return service.list_sessions(limit)

    @app.get("/v1/sessions/{session_id}")
    def session_detail(session_id: str) -> dict[str, Any]:
        try:
            return service.session_detail(session_id)
        except UnknownSessionError as exc:
            raise HTTPException(status_code=404, detail=exc.message) from exc

    @app.get("/v1/certificate")
    def certificate() -> dict[str, Any]:
        return service.certificate().to_dict()

    @app.post("/v1/certificate/verify")
    def verify_certificate(payload: CertificatePayload) -> dict[str, Any]:
        try:
            parsed = Certificate.from_dict(payload.model_dump(by_alias=True))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"valid": verify(parsed), "verificationHash": parsed.verification_hash}

    @app.get("/v1/export/badge.svg")
    def badge_svg() -> Response:
        return Response(content=render_svg(service.certificate(), service.catalog), media_type="image/svg+xml")

    @app.get("/v1/export/profile.html")
    def profile_html() -> HTMLResponse:
        return HTMLResponse(content=render_html(service.certificate(), service.catalog))

    return app
