from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import logging

# Import database components
from app.database.database import sync_engine, Base, SessionLocal

# Import routers
from app.modules.catalog.router import catalog_router
from app.modules.payments.router import payments_router
from app.modules.invoices.router import invoices_router, invoice_ranges_router
from app.modules.taxes.router import taxes_router
from app.modules.invoices.service import InvoiceService

# Import models for table creation
import app.modules.catalog.models
import app.modules.payments.models
import app.modules.invoices.models

from app.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Clinic Billing API",
    description="Cobros, descuentos, pagos divididos, facturación (recibo simple y factura legal CAI) y reembolsos",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(catalog_router)
app.include_router(payments_router)
app.include_router(invoices_router)
app.include_router(invoice_ranges_router)
app.include_router(taxes_router)

# Create database tables (only for development - use migrations in production)
if settings.ENVIRONMENT == "development":
    Base.metadata.create_all(bind=sync_engine)


@app.get("/")
async def read_root():
    return {
        "message": "Clinic Billing API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


@app.on_event("startup")
async def startup_event():
    logger.info("Clinic Billing API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")
    logger.info(f"ISV rate: {settings.ISV_RATE}")
    log_invoice_range_status()


def log_invoice_range_status():
    """Avisar en el arranque si el rango CAI está por vencer o agotarse"""
    db = SessionLocal()
    try:
        report = InvoiceService(db).get_range_status()
        for warning in report.warnings:
            logger.warning(warning)
    except Exception as e:
        logger.error(f"Could not check invoice range status: {e}")
    finally:
        db.close()
