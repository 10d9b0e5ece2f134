from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from insign.api.routes import audit, health, public_signatures, signatures, templates
from insign.core.config import settings
from insign.core.logging_setup import configure_logging, logger
from insign.db.session import init_db


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncGenerator[None, None]:
    init_db()
    yield


def _normalize_origin(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.strip().rstrip("/")
    return cleaned or None


def create_app() -> FastAPI:
    configure_logging()
    application = FastAPI(
        title=settings.project_name,
        debug=settings.debug,
        lifespan=lifespan,
    )

    public_front_base = settings.resolved_public_app_url()
    raw_origins = settings.allowed_origins + ([public_front_base] if public_front_base else [])
    origins: list[str] = []
    for item in raw_origins:
        normalized = _normalize_origin(item)
        if normalized and normalized not in origins:
            origins.append(normalized)
    logger.info("CORS origins: %s", origins)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(health.router, prefix="/health")
    application.include_router(signatures.router, prefix=settings.api_v1_str)
    application.include_router(templates.router, prefix=settings.api_v1_str)
    application.include_router(audit.router, prefix=settings.api_v1_str)
    application.include_router(public_signatures.router)

    @application.get("/")
    def root() -> dict[str, str]:
        return {"service": settings.project_name}

    logger.info("%s initialised", settings.project_name)
    return application


app = create_app()
