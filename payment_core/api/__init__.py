"""
Payment Core API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import Response

from .dependencies import PaymentSystem, resolve_system
from .errors import failure_response, register_exception_handlers
from .users import router as users_router
from .transactions import router as transactions_router
from .business import router as business_router
from .public import router as public_router


ALLOWED_METHODS = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
ALLOWED_HEADERS = "Content-Type, Authorization, X-API-Key"
PREFLIGHT_MAX_AGE = "86400"


def _apply_cors_headers(response: Response, origin: Optional[str]) -> Response:
    if origin:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Vary"] = "Origin"
    response.headers["Access-Control-Allow-Methods"] = ALLOWED_METHODS
    response.headers["Access-Control-Allow-Headers"] = ALLOWED_HEADERS
    return response


def create_app(system: Optional[PaymentSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Payment Core API",
        description="Wallets, virtual cards and merchant payments with atomic posting",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.payment_system = system

    register_exception_handlers(app)

    # Origins are checked per API key, so CORS is decided per request
    @app.middleware("http")
    async def dynamic_cors(request: Request, call_next):
        origin = request.headers.get("origin")
        decision = resolve_system(app).gateway.check_origin(
            request.headers.get("x-api-key"), origin, request.url.path
        )

        if request.method == "OPTIONS" and origin:
            # Preflights carry no API key; the actual request is checked again
            echo = (decision.origin or origin) if decision.allowed else None
            response = _apply_cors_headers(Response(status_code=204), echo)
            response.headers["Access-Control-Max-Age"] = PREFLIGHT_MAX_AGE
            return response

        if not decision.allowed:
            return failure_response(decision.failure)

        response = await call_next(request)
        return _apply_cors_headers(response, decision.origin)

    # Include routers
    app.include_router(users_router, prefix="/api/users", tags=["Users"])
    app.include_router(transactions_router, prefix="/api/transactions", tags=["Transactions"])
    app.include_router(business_router, prefix="/api/business", tags=["Business"])
    app.include_router(public_router, prefix="/api/public", tags=["Public API"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "payment_core_api",
            "version": "1.0.0"
        }

    @app.get("/")
    async def get_api_info():
        return {
            "name": "Payment Core API",
            "version": "1.0.0",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "users": "/api/users",
                "transactions": "/api/transactions",
                "business": "/api/business",
                "public": "/api/public"
            }
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 8090, workers: int = 1, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "payment_core.api:app",
        host=host,
        port=port,
        workers=workers,
        reload=debug,
        log_level="info"
    )


app = create_app()
