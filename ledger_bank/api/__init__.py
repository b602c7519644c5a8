"""
Ledger Bank API Application Factory
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import get_config
from ..errors import (
    LedgerError, NotFoundError, OwnershipError, CurrencyMismatchError,
    InvalidTransferError, ConstraintViolationError, PasswordMismatchError,
    ConflictError, StorageUnavailableError
)
from ..logging_config import setup_logging, get_logger, log_action
from ..tokens import TokenError
from .users import router as users_router
from .accounts import router as accounts_router
from .transfers import router as transfers_router


# Most specific first; the first matching class wins
ERROR_STATUS_CODES = [
    (NotFoundError, 404),
    (OwnershipError, 403),
    (CurrencyMismatchError, 400),
    (InvalidTransferError, 400),
    (ConstraintViolationError, 403),
    (TokenError, 401),
    (PasswordMismatchError, 401),
    (ConflictError, 409),
    (StorageUnavailableError, 503),
]


def status_code_for(error: LedgerError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    logger = get_logger("ledger_bank.api")

    app = FastAPI(
        title="Ledger Bank API",
        description="Accounts, double-entry ledger and atomic money transfers",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status_code = status_code_for(exc)
        if status_code >= 500:
            log_action(
                logger, "error", f"Request failed: {exc}",
                action=f"{request.method} {request.url.path}",
                extra={"error_type": type(exc).__name__}
            )
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    app.include_router(users_router, prefix="/users", tags=["Users"])
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transfers_router, prefix="/transfers", tags=["Transfers"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "ledger_bank_api",
            "version": __version__
        }

    return app


app = create_app()
