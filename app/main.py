from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.firebase import init_firebase
from app.core.database import engine, Base
from app.core.rate_limit_middleware import RateLimitMiddleware
from app.api.v1.router import api_router
import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def get_version() -> str:
    """Read version from VERSION file, fallback to default if not found."""
    version_file = os.path.join(os.path.dirname(os.path.dirname(__file__)), "VERSION")
    try:
        if os.path.exists(version_file):
            with open(version_file, "r") as f:
                version = f.read().strip()
                if version:
                    return version
    except OSError as e:
        logger.warning(f"Could not read VERSION file: {e}")
    return "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_firebase()
    Base.metadata.create_all(bind=engine)
    logger.info(f"PixCart API started - environment: {settings.environment}")
    yield


app = FastAPI(
    title="PixCart API",
    version=get_version(),
    debug=settings.debug,
    redirect_slashes=False,
    lifespan=lifespan,
)

# CORS must wrap the burst limiter so 429s still carry CORS headers
app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info(f"validation_exception_handler: {request.url.path} - {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": {
            "error": "validation_error",
            "message": "Invalid request",
            "errors": [{"loc": list(error.get("loc", ())), "msg": error.get("msg")} for error in exc.errors()],
        }},
    )


app.include_router(api_router, prefix=settings.api_v1_str)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
