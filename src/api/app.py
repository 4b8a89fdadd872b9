"""FastAPI trigger surface for scheduled batches and operator actions."""

import hmac
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from src.models.config import ConfigManager, OrchestratorConfig
from src.models.errors import (
    BatchStartError,
    JobNotFoundError,
    JobStateError,
    QueueFullError,
    VendorNotFoundError,
)
from src.orchestrator.orchestrator import CRON_ENDPOINT
from src.orchestrator.output import (
    JSONOutputFormatter,
    format_cron_log,
    format_health,
    format_job,
)
from src.orchestrator.runtime import Runtime, build_runtime


class CancelRequest(BaseModel):
    """Body of a cancel request."""
    reason: str = "cancelled by operator"


class ShutdownRequest(BaseModel):
    """Body of an emergency shutdown request."""
    reason: str


def bearer_matches(authorization: Optional[str], secret: Optional[str]) -> bool:
    """
    Constant-time check of an ``Authorization: Bearer <secret>`` header.

    With no secret configured every caller is accepted.
    """
    if not secret:
        return True
    if not authorization:
        return False
    expected = f"Bearer {secret}"
    return hmac.compare_digest(authorization.encode("utf-8"), expected.encode("utf-8"))


def create_app(
    runtime: Optional[Runtime] = None,
    config: Optional[OrchestratorConfig] = None,
) -> FastAPI:
    """
    Create the API application.

    Args:
        runtime: Pre-built runtime (tests); built from config on startup otherwise
        config: Configuration used when no runtime is passed

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "runtime", None) is None:
            app.state.runtime = await build_runtime(config or ConfigManager().load_config())
        try:
            yield
        finally:
            await app.state.runtime.aclose()

    app = FastAPI(title="Scrape Orchestrator", lifespan=lifespan)
    app.state.runtime = runtime

    def get_runtime(request: Request) -> Runtime:
        return request.app.state.runtime

    def require_secret(
        request: Request,
        authorization: Optional[str] = Header(default=None),
    ) -> None:
        rt: Runtime = request.app.state.runtime
        if not bearer_matches(authorization, rt.config.cron_secret):
            rt.logger.log("unauthorized_request", path=request.url.path)
            raise HTTPException(status_code=401, detail="Unauthorized")

    @app.get("/health")
    async def health():
        """Liveness check."""
        return {"status": "healthy"}

    async def scheduled_scrape(rt: Runtime):
        try:
            report = await rt.orchestrator.run_scheduled_batch(endpoint=CRON_ENDPOINT)
        except BatchStartError as e:
            return JSONResponse(
                status_code=500,
                content={"error": "Cron job failed", "details": str(e)},
            )
        return JSONOutputFormatter().format(report)

    @app.get(CRON_ENDPOINT, dependencies=[Depends(require_secret)])
    async def scheduled_scrape_get(rt: Runtime = Depends(get_runtime)):
        """Run a scheduled batch (cron invocation)."""
        return await scheduled_scrape(rt)

    @app.post(CRON_ENDPOINT, dependencies=[Depends(require_secret)])
    async def scheduled_scrape_post(rt: Runtime = Depends(get_runtime)):
        """Run a scheduled batch (manual invocation)."""
        return await scheduled_scrape(rt)

    @app.get("/api/budget/status")
    async def budget_status(rt: Runtime = Depends(get_runtime)):
        """Read-only budget snapshot for dashboards."""
        return {"success": True, "data": rt.ledger.status_snapshot()}

    @app.post("/api/budget/emergency-shutdown", dependencies=[Depends(require_secret)])
    async def emergency_shutdown(body: ShutdownRequest, rt: Runtime = Depends(get_runtime)):
        """Exhaust all periods so that only free methods run."""
        await rt.ledger.emergency_shutdown(body.reason)
        return {"success": True, "data": rt.ledger.status_snapshot()}

    @app.post("/api/jobs/{job_id}/cancel", dependencies=[Depends(require_secret)])
    async def cancel_job(
        job_id: str,
        body: Optional[CancelRequest] = None,
        rt: Runtime = Depends(get_runtime),
    ):
        reason = body.reason if body else CancelRequest().reason
        try:
            job = await rt.orchestrator.cancel_job(job_id, reason)
        except JobNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except JobStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return {"success": True, "job": format_job(job)}

    @app.post("/api/jobs/{job_id}/retry", dependencies=[Depends(require_secret)])
    async def retry_job(job_id: str, rt: Runtime = Depends(get_runtime)):
        try:
            job = await rt.orchestrator.retry_job(job_id)
        except (JobNotFoundError, VendorNotFoundError) as e:
            raise HTTPException(status_code=404, detail=str(e))
        except JobStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except QueueFullError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"success": True, "job": format_job(job)}

    @app.post("/api/vendors/{vendor_id}/reactivate", dependencies=[Depends(require_secret)])
    async def reactivate_vendor(vendor_id: str, rt: Runtime = Depends(get_runtime)):
        try:
            vendor = await rt.scheduling.reactivate_vendor(vendor_id)
        except VendorNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"success": True, "vendor_id": vendor.vendor_id, "is_active": vendor.is_active}

    @app.get("/api/cron/logs")
    async def cron_logs(limit: int = 10, rt: Runtime = Depends(get_runtime)):
        logs = await rt.scheduling.get_recent_cron_logs(limit)
        return {"success": True, "logs": [format_cron_log(log) for log in logs]}

    @app.get("/api/scraping/health")
    async def scraping_health(rt: Runtime = Depends(get_runtime)):
        health_data = await rt.scheduling.get_scraping_health()
        return {"success": True, "data": format_health(health_data)}

    return app
