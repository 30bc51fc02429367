import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kyc_service.api import admin, documents, health, verification, webhooks
from kyc_service.core.errors import KycError
from kyc_service.scheduler import start_scheduler, stop_scheduler
from kyc_service.utils.redis_pool import close_redis

log = logging.getLogger("kyc")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

origins = [
    "http://localhost:3000",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    start_scheduler()
    yield
    stop_scheduler()
    await close_redis()


app = FastAPI(title="KYC Service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(KycError)
async def kyc_error_handler(request: Request, exc: KycError):
    if exc.status_code >= 500:
        log.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc}")
    else:
        log.warning(f"{request.method} {request.url.path} rejected: {exc.code}: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(health.router)
app.include_router(verification.router)
app.include_router(documents.router)
app.include_router(webhooks.router)
app.include_router(admin.router)
