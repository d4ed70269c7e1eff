# backend/portfolio_api/main.py
from contextlib import asynccontextmanager
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from portfolio_api.core.logging import configure_logging
from portfolio_api.core.settings import Settings, settings
from portfolio_api.api.routes_portfolio import router as portfolio_router
from portfolio_api.services.portfolio import PortfolioService

REFRESH_JOB_ID = "portfolio-refresh"


def build_scheduler(service: PortfolioService, interval_min: float) -> Optional[AsyncIOScheduler]:
    """Interval job that rebuilds the snapshot in the background. None when disabled."""
    if interval_min <= 0:
        return None
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        service.force_refresh,
        trigger=IntervalTrigger(minutes=interval_min),
        kwargs={"synchronous": False},
        id=REFRESH_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    return scheduler


def create_app(cfg: Optional[Settings] = None, service: Optional[PortfolioService] = None) -> FastAPI:
    cfg = cfg or settings
    service = service or PortfolioService.from_settings(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = build_scheduler(service, cfg.refresh_interval_min)
        if scheduler is not None:
            scheduler.start()
            logger.info(f"Scheduled portfolio refresh every {cfg.refresh_interval_min:g} min")
        # seed the cache without holding up startup
        await service.force_refresh(synchronous=False)
        try:
            yield
        finally:
            if scheduler is not None and scheduler.running:
                scheduler.shutdown(wait=False)
                logger.info("Scheduler shut down")
            await service.close()

    app = FastAPI(title="Portfolio Dashboard API", version="1.0.0", lifespan=lifespan)
    app.state.service = service

    # CORS for the dashboard frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(portfolio_router, prefix="/api/portfolio", tags=["portfolio"])

    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    @app.get("/api/test")
    def api_test():
        return {"message": "Backend is working!", "env": cfg.env}

    return app


configure_logging(settings.log_level)
app = create_app()


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run("portfolio_api.main:app", host="0.0.0.0", port=settings.port)
