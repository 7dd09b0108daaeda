import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.asgi import OpenTelemetryMiddleware

from common.core.config import settings
from common.core.constants import Environment
from common.core.otel_axiom_exporter import _initialize_telemetry, get_logger
from common.db.session import init_db
from common.providers.locking.factory import get_lock_provider
from api.v1.routes.router import api_router
from packages.billing.providers.payment.factory import get_payment_gateway

_initialize_telemetry()
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name} ({settings.environment.value})")
    await init_db()

    lock_provider = get_lock_provider()
    await lock_provider.connect()

    # An unreachable gateway degrades billing but must not block startup
    if not await get_payment_gateway().health_check():
        logger.warning("Payment gateway unreachable at startup")

    yield

    logger.info("Shutting down billing API")
    await lock_provider.disconnect()


def create_app() -> FastAPI:
    local = settings.environment == Environment.LOCAL
    app = FastAPI(
        title=settings.app_name,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url="/docs" if local else None,
        redoc_url="/redoc" if local else None,
        openapi_url="/openapi.json" if local else None,
    )

    FastAPIInstrumentor.instrument_app(app)
    app.add_middleware(OpenTelemetryMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api/v1")

    # k8s liveness checks hit this directly; kept out of /api/v1 and the schema
    @app.get("/healthz", include_in_schema=False)
    async def healthz():
        return {"status": "ok"}

    return app


app = create_app()
