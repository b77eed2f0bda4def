"""FastAPI application for the UCP gateway."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import GatewaySettings, load_settings
from ..logging import configure_logging
from .dependencies import GatewayContainer, build_container, get_container
from .exceptions import register_exception_handlers
from .middleware import RequestContextMiddleware
from .routers import checkout, discovery, identity, payments

logger = logging.getLogger("ucp_gateway.api")


def create_app(
    settings: GatewaySettings | None = None,
    container: GatewayContainer | None = None,
) -> FastAPI:
    settings = settings or (container.settings if container else load_settings())
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    container = container or build_container(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting UCP gateway {__version__} environment={settings.environment}")
        yield
        logger.info("Shutting down UCP gateway...")
        await container.store.close()

    app = FastAPI(
        title="UCP Checkout Gateway",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    register_exception_handlers(app)

    app.dependency_overrides[get_container] = lambda: container

    app.include_router(discovery.router)
    app.include_router(discovery.health_router)
    app.include_router(checkout.router)
    app.include_router(payments.router)
    app.include_router(identity.router)

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=3000)
