from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from healthtargets.core.database import Base, engine
import healthtargets.models  # noqa: F401 register all models with Base before create_all
import asyncio
from sqlalchemy.exc import OperationalError
from contextlib import asynccontextmanager

from healthtargets.api.health import router as health_router
from healthtargets.api.metrics import router as metrics_router
from healthtargets.api.plan import router as plan_router
from healthtargets.api.profile import router as profile_router
from healthtargets.core.config import settings
from healthtargets.core.errors import HealthTargetsError
from healthtargets.core.logging import configure_logging
import logging

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


async def wait_for_db(engine, retries=10, delay=1):
    for i in range(retries):
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database ready")
            return
        except OperationalError:
            logger.warning("Database not ready, retry %s/%s", i + 1, retries)
            await asyncio.sleep(delay)
    raise RuntimeError("Database not ready after retries")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await wait_for_db(engine)
    yield
    await engine.dispose()


app = FastAPI(title="Health Targets API", lifespan=lifespan)


@app.exception_handler(HealthTargetsError)
async def health_targets_error_handler(request: Request, exc: HealthTargetsError):
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"] if part != "body")
        errors.append(f"{field}: {error['msg']}" if field else error["msg"])
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request", "kind": "validation", "errors": errors},
    )


app.include_router(health_router)
app.include_router(metrics_router)
app.include_router(plan_router)
app.include_router(profile_router)
