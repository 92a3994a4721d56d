"""
Bank Ledger API Application Factory
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import (
    AccountNotFound, AlreadyProcessed, ApplicationNotFound, Forbidden,
    LedgerError, TransientError
)
from .accounts import router as accounts_router
from .loans import router as loans_router
from .insurance import router as insurance_router


# Anything not listed is a rejected request (400)
ERROR_STATUS = {
    AccountNotFound: 404,
    ApplicationNotFound: 404,
    Forbidden: 403,
    AlreadyProcessed: 409,
    TransientError: 503,
}


def status_for(error: LedgerError) -> int:
    """HTTP status code for a ledger failure"""
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status_code
    return 400


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content={"error": exc.code, "detail": exc.message}
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Bank Ledger API",
        description="Accounts, transfers, and loan and insurance applications",
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

    app.add_exception_handler(LedgerError, ledger_error_handler)

    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(insurance_router, prefix="/insurance", tags=["Insurance"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "bank_ledger_api",
            "version": __version__
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 8090, log_level: str = "info"):
    """Run the API server with uvicorn"""
    import uvicorn
    uvicorn.run(create_app(), host=host, port=port, log_level=log_level)
