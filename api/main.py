"""
Restaurant Settlement API - Main Application.

FastAPI application with CORS enabled for the cashier front end.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__
from services.settings import SettlementSettings

logging.basicConfig(
    level=SettlementSettings.from_env().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Restaurant Settlement API",
    description="REST API for settling restaurant sales and issuing electronic invoices",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Terminals run on the local network; origins are not restricted.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
def health_check():
    """Liveness check for the cashier terminals."""
    return {
        "status": "healthy",
        "version": __version__,
        "service": "restaurant-settlement-api",
    }


@app.get("/", tags=["Root"])
def root():
    """List the settlement entry points."""
    return {
        "service": "Restaurant Settlement API",
        "version": __version__,
        "endpoints": {
            "settle": "POST /api/v1/sales/{sale_id}/settlement",
            "stock_check": "GET /api/v1/sales/{sale_id}/stock-check",
            "ticket": "GET /api/v1/sales/{sale_id}/ticket",
            "refresh": "POST /api/v1/sales/{sale_id}/fiscal-document/refresh",
            "invoices": "GET /api/v1/invoices",
            "closed_sales": "GET /api/v1/sales/closed",
            "daily_report": "GET /api/v1/reports/daily",
        },
        "docs": "/docs",
    }


from api.routers import cashier, settlements  # noqa: E402

app.include_router(settlements.router, prefix="/api/v1", tags=["Settlements"])
app.include_router(cashier.router, prefix="/api/v1", tags=["Cashier"])
