"""
IPManage — HTTP API Entry Point.

Starts the FastAPI management API over the block list.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from ipmanage.api.routes import router as api_router
from ipmanage.config import Settings, settings
from ipmanage.manager import BlockManager, create_manager

logger = logging.getLogger("ipmanage")


def create_app(
    cfg: Optional[Settings] = None, manager: Optional[BlockManager] = None,
) -> FastAPI:
    """Factory for the FastAPI application."""
    cfg = cfg or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(
            level=getattr(logging, cfg.log_level.upper()),
            format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            force=True,
        )
        if app.state.manager is None:
            app.state.manager = create_manager(cfg)
        logger.info(
            "%s started with %d record(s) from %s",
            cfg.app_name, len(app.state.manager.store), cfg.blocks_path,
        )
        yield
        logger.info("%s stopped.", cfg.app_name)

    app = FastAPI(
        title=cfg.app_name,
        version="0.1.0",
        description="Firewall block list manager",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )
    app.state.manager = manager
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "ipmanage.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level,
    )
