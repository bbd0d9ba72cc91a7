"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from cryptofolio.config import settings
from cryptofolio.api.dependencies import AppContainer
from cryptofolio.api.routes import wallets, cex, tax, reports, transactions, portfolio
from cryptofolio.utils.errors import CryptofolioError, ErrorKind

# Import tax rules to register them
import cryptofolio.tax_rules.italy  # noqa: F401

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = getattr(app.state, "container", None) or AppContainer(settings)
    app.state.container = container
    await container.startup()
    yield
    await container.shutdown()


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description="Crypto portfolio ledger and Italian tax calculation API",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CryptofolioError)
async def cryptofolio_error_handler(request: Request, exc: CryptofolioError):
    status_code = 400 if exc.kind in (ErrorKind.PRECONDITION, ErrorKind.UNRECOGNIZED) else 502
    logger.error(f"[API] {request.url.path}: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "kind": exc.kind.value})


# Include routers
app.include_router(wallets.router, prefix=f"{settings.api_prefix}/wallets", tags=["wallets"])
app.include_router(cex.router, prefix=f"{settings.api_prefix}/cex", tags=["cex"])
app.include_router(transactions.router, prefix=f"{settings.api_prefix}/transactions", tags=["transactions"])
app.include_router(tax.router, prefix=f"{settings.api_prefix}/tax", tags=["tax"])
app.include_router(reports.router, prefix=f"{settings.api_prefix}/reports", tags=["reports"])
app.include_router(portfolio.router, prefix=f"{settings.api_prefix}/portfolio", tags=["portfolio"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Cryptofolio Tax API",
        "version": settings.api_version,
        "docs": "/docs"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
