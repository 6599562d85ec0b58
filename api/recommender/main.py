import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import LOG_LEVEL
from .deps import get_recommendation_service
from .errors import ConfigurationError, NotFoundError, UpstreamUnavailable
from .routes import include_modular_routers

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Compatibility Recommendation API")
include_modular_routers(app)


@app.exception_handler(ConfigurationError)
async def _configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(UpstreamUnavailable)
async def _upstream_unavailable(request: Request, exc: UpstreamUnavailable) -> JSONResponse:
    logger.error("[RECS] upstream unavailable on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Recommendation data is temporarily unavailable"})


@app.on_event("startup")
def on_startup() -> None:
    # Fails fast on bad weight tables or an unreadable model artifact.
    get_recommendation_service()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
