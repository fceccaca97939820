import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mangum import Mangum

from donation_ledger.api import admin_routers, routers
from donation_ledger.core.config import get_settings
from donation_ledger.core.exceptions import DonationLedgerError
from donation_ledger.core.logging_config import configure_logging

settings = get_settings()
configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Donation Ledger API",
    root_path=settings.API_ROOT_PATH
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DonationLedgerError)
async def donation_ledger_error_handler(request: Request, exc: DonationLedgerError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/")
def read_root():
    return {"message": "Welcome to the Donation Ledger API"}


app.include_router(routers.router)
app.include_router(admin_routers.router)

handler = Mangum(app)
