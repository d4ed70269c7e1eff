from datetime import datetime, timezone
from io import BytesIO
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from portfolio_api.core.errors import BuildTimeout, SourceReadError
from portfolio_api.models.records import Snapshot
from portfolio_api.services.csv_export import to_csv_bytes
from portfolio_api.services.portfolio import PortfolioRead, PortfolioService
from portfolio_api.services.summary import summarize

router = APIRouter()

RETRY_AFTER_S = 5


class RefreshRequest(BaseModel):
    run_async: bool = Field(default=False, alias="async")

    model_config = ConfigDict(populate_by_name=True)


def _service(request: Request) -> PortfolioService:
    return request.app.state.service

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()

def _error(status_code: int, message: str, error: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "timestamp": _now(), "error": error},
        headers=headers,
    )

def _payload(snapshot: Snapshot, cached: bool, stale: bool = False, refresh_error: Optional[str] = None) -> Dict[str, Any]:
    return {
        "success": True,
        "data": snapshot.to_rows(),
        "cached": cached,
        "stale": stale,
        "refreshError": refresh_error,
        "timestamp": snapshot.timestamp,
        "totalStocks": len(snapshot.holdings),
    }

async def _read(request: Request) -> PortfolioRead | JSONResponse:
    try:
        return await _service(request).get_portfolio()
    except BuildTimeout as e:
        logger.warning(f"Portfolio build still running: {e}")
        return _error(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Portfolio data is still being prepared, please retry shortly",
            str(e),
            headers={"Retry-After": str(RETRY_AFTER_S)},
        )
    except SourceReadError as e:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to read portfolio source", str(e))
    except Exception as e:
        logger.exception(f"Error in /portfolio: {e}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to fetch portfolio data", str(e))


@router.get("")
async def get_portfolio(request: Request):
    read = await _read(request)
    if isinstance(read, JSONResponse):
        return read
    if read.cached:
        logger.debug("Serving portfolio from cache")
    return _payload(read.snapshot, cached=read.cached, stale=read.stale, refresh_error=read.refresh_error)


@router.get("/health")
def portfolio_health(request: Request):
    return {"status": "ok", **_service(request).health(), "timestamp": _now()}


@router.post("/refresh")
async def refresh_portfolio(request: Request, payload: Optional[RefreshRequest] = None):
    service = _service(request)
    if payload is not None and payload.run_async:
        await service.force_refresh(synchronous=False)
        logger.info("Asynchronous portfolio refresh requested")
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"success": True, "message": "Refresh started", "timestamp": _now()},
        )

    try:
        snapshot = await service.force_refresh(synchronous=True)
    except SourceReadError as e:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to read portfolio source", str(e))
    except Exception as e:
        logger.exception(f"Refresh failed: {e}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to refresh portfolio data", str(e))
    return _payload(snapshot, cached=False)


@router.get("/summary")
async def portfolio_summary(request: Request):
    read = await _read(request)
    if isinstance(read, JSONResponse):
        return read
    return {"success": True, "cached": read.cached, **summarize(read.snapshot)}


@router.get("/export")
async def export_portfolio(request: Request):
    read = await _read(request)
    if isinstance(read, JSONResponse):
        return read
    return StreamingResponse(
        BytesIO(to_csv_bytes(read.snapshot)),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="portfolio.csv"'},
    )
