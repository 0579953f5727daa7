"""
Token Vesting API Application Factory
"""

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..exceptions import VestingError, TransferError
from .errors import vesting_error_handler, transfer_error_handler, value_error_handler
from .schedules import router as schedules_router
from .beneficiaries import router as beneficiaries_router
from .dashboard import router as dashboard_router
from .admin import router as admin_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Token Vesting Ledger API",
        description="Linear vesting schedules with cliff, setup fee and revocation",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(VestingError, vesting_error_handler)
    app.add_exception_handler(TransferError, transfer_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)

    app.include_router(schedules_router, prefix="/schedules", tags=["Schedules"])
    app.include_router(beneficiaries_router, prefix="/beneficiaries", tags=["Beneficiaries"])
    app.include_router(dashboard_router, prefix="/dashboard", tags=["Dashboard"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "token_vesting_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Token Vesting Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "schedules": "/schedules",
                "beneficiaries": "/beneficiaries",
                "dashboard": "/dashboard",
                "admin": "/admin",
            }
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8095, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "token_vesting.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
