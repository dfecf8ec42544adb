"""
DocFetch Backend API
FastAPI application that acquires source documents (PDF bills, invoices,
statements) from inbound notification emails.
"""

import logging

from fastapi import FastAPI, HTTPException

from app.routers import email_intake
from app.db import supabase_admin

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


app = FastAPI(
    title="DocFetch API",
    description="Document acquisition from inbound notification emails",
    version="0.1.0",
)

app.include_router(email_intake.router, prefix="/api/email-intake", tags=["email-intake"])


@app.get("/")
async def root():
    return {"message": "DocFetch API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    """
    Test the Supabase database connection.

    Reads one row from extraction_rules with the admin client. Returns 503
    on failure.
    """
    if supabase_admin is None:
        raise HTTPException(
            status_code=503,
            detail="Database client unavailable: SUPABASE_SERVICE_KEY is not configured",
        )

    try:
        supabase_admin.table("extraction_rules").select("id").limit(1).execute()
        return {"status": "ok", "database": "reachable"}
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(exc)}",
        )
