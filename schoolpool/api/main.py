"""
FastAPI app for the SchoolPool decision engine.

Run (from the repo root):
  python -m schoolpool.api.main
  uvicorn schoolpool.api.main:app --reload
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from schoolpool.api.router import router
from schoolpool.application.config import get_settings
from schoolpool.application.container import Services, build_services
from schoolpool.utils.logger import logger, set_level


def create_app(services: Optional[Services] = None) -> FastAPI:
    services = services or build_services(get_settings())
    set_level(services.settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services.settings.enable_scheduler:
            services.jobs.add_proposal_sweep(services.resolver, services.settings.proposal_sweep_interval_s)
            services.jobs.add_geo_refresh(services.geo_cache, services.settings.geo_data_max_age_min)
            services.jobs.start()
        logger.info(f"SchoolPool API started ({services.settings.app_env})")
        yield
        services.jobs.stop()
        close = getattr(services.geo_provider, "close", None)
        if close is not None:
            close()
        logger.info("SchoolPool API stopped")

    app = FastAPI(
        title="SchoolPool API",
        description="School carpool matching, route safety and schedule coordination",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None if services.settings.is_production else "/docs",
        redoc_url=None if services.settings.is_production else "/redoc",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.services = services
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run("schoolpool.api.main:app", host=settings.app_host, port=settings.app_port)
