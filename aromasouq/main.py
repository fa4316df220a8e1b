
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog
from aromasouq.errors import DomainError
from aromasouq.models import registry
from aromasouq.routers import coupons as coupons_router
from aromasouq.routers import orders as orders_router
from aromasouq.routers import wallet as wallet_router
from aromasouq.utils.logging import configure_logging

configure_logging()
logger = structlog.get_logger(__name__)

# Create database tables
registry.create_all()

app = FastAPI(
    title="AromaSouq Pricing and Wallet API",
    description="Order pricing, coupon validation, coin wallet ledger and order lifecycle for AromaSouq",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS - keep permissive for demo; restrict in prod
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(coupons_router.router)
app.include_router(wallet_router.router)
app.include_router(orders_router.router)


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error("Domain error", path=request.url.path, code=exc.code, detail=exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"status_code": exc.status_code, "code": exc.code, "detail": exc.detail}},
    )


# Proper JSON error with correct status code
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"status_code": exc.status_code, "detail": exc.detail}},
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("aromasouq.main:app", host="0.0.0.0", port=8000, reload=True)
