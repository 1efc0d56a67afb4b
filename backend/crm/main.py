"""
CRM Backend API
FastAPI application for inbound resume ingestion and multi-channel messaging.
"""

import logging
import os
import socket
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from crm.db import supabase_admin
from crm.routers import messages, webhooks
from crm.services.customer_resolver import CUSTOMERS_TABLE
from crm.services.storage import CUSTOMER_FILES_BUCKET

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


def _is_usable_lan_ip(ip: str) -> bool:
    """Return True if the IP is a usable LAN address (not loopback, not Docker internal)."""
    if ip.startswith("127.") or ip.startswith("172."):
        return False
    # Docker Desktop for Mac resolves host.docker.internal to 192.168.65.x
    return not ip.startswith("192.168.65.")


def get_local_ip() -> Optional[str]:
    """
    Detect the host machine's local network IP address.

    ``HOST_IP`` wins when set (containers cannot see the host's LAN IP);
    otherwise the OS is asked which interface it would route out of.
    Returns None when detection fails.
    """
    host_ip = os.getenv("HOST_IP", "").strip()
    if host_ip:
        return host_ip

    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            ip = s.getsockname()[0]
            if _is_usable_lan_ip(ip):
                return ip
    except OSError:
        pass

    return None


app = FastAPI(
    title="CRM API",
    description="Resume ingestion from inbound email, SMS/WhatsApp/email messaging and the communication ledger",
    version="0.1.0",
)


def get_cors_origins() -> List[str]:
    """
    Allowed CORS origins: the local dev server (localhost:5173 and :3000),
    the same ports on the detected LAN IP, plus any comma-separated
    CORS_ORIGINS. Duplicates are removed while preserving order.
    """
    always_included = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    local_ip = get_local_ip()
    if local_ip:
        always_included.append(f"http://{local_ip}:5173")
        always_included.append(f"http://{local_ip}:3000")

    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    extra_origins = [o.strip() for o in cors_env.split(",") if o.strip()]

    seen: set = set()
    origins: List[str] = []
    for origin in always_included + extra_origins:
        if origin not in seen:
            seen.add(origin)
            origins.append(origin)
    return origins


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])
app.include_router(messages.router, prefix="/api", tags=["messages"])


@app.on_event("startup")
async def log_startup_urls() -> None:
    """Log where the API can be reached; HOST_PORT reflects Docker port mapping."""
    host_port = os.getenv("HOST_PORT", "8000")
    local_ip = get_local_ip()
    network_line = (
        f"  Network: http://{local_ip}:{host_port}"
        if local_ip
        else "  Network: (unavailable)"
    )
    logger.info(
        "CRM API running at:\n"
        "  Local:   http://localhost:%s\n"
        "%s",
        host_port,
        network_line,
    )


@app.get("/")
async def root():
    return {"message": "CRM API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    """Select one customer id to prove the admin client reaches the database."""
    try:
        supabase_admin.table(CUSTOMERS_TABLE).select("id").limit(1).execute()
        return {"status": "ok", "database": "reachable"}
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(exc)}",
        )


@app.get("/health/storage")
async def health_storage():
    """Verify the customer-files bucket exists."""
    try:
        buckets = supabase_admin.storage.list_buckets()
        bucket_names = [b.name for b in buckets]
    except Exception as exc:
        logger.error(f"Storage health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Storage check failed: {str(exc)}",
        )

    if CUSTOMER_FILES_BUCKET not in bucket_names:
        raise HTTPException(
            status_code=503,
            detail=f"Storage bucket '{CUSTOMER_FILES_BUCKET}' not found",
        )
    return {"status": "ok", "storage": "reachable", "bucket": CUSTOMER_FILES_BUCKET}
