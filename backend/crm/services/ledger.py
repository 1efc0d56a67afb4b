"""
Communication ledger.

Append-only record of every inbound and outbound message. Rows are inserted
once and never updated; a failed attempt is its own row with status="failed".
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

from crm.db import supabase_admin
from crm.errors import PersistenceError
from crm.models.communication import Channel, Communication, CommunicationStatus

logger = logging.getLogger(__name__)

COMMUNICATIONS_TABLE = "communications"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_communication_row(
    customer_id: str,
    channel: Channel,
    content: str,
    status: CommunicationStatus,
    metadata: Optional[dict[str, Any]] = None,
    sent_at: Optional[str] = None,
) -> dict[str, Any]:
    return {
        "customer_id": customer_id,
        "type": channel.value,
        "content": content,
        "sent_at": sent_at or _now_iso(),
        "status": status.value,
        "metadata": metadata or {},
    }


def insert_communication(row: dict[str, Any]) -> Communication:
    """
    Insert a prepared communications row.

    Raises:
        PersistenceError: the insert failed or returned no row. The ledger
        never swallows a failed write; callers decide whether that is fatal.
    """
    try:
        result = supabase_admin.table(COMMUNICATIONS_TABLE).insert(row).execute()
    except Exception as e:
        logger.error(f"Failed to insert communication for customer {row.get('customer_id')!r}: {e}")
        raise PersistenceError(COMMUNICATIONS_TABLE, str(e)) from e

    if not result.data:
        logger.error("communications insert returned no data")
        raise PersistenceError(COMMUNICATIONS_TABLE, "insert returned no data")

    return Communication(**result.data[0])


def record_communication(
    customer_id: str,
    channel: Channel,
    content: str,
    status: CommunicationStatus,
    metadata: Optional[dict[str, Any]] = None,
) -> Communication:
    """Build and insert one ledger row. See insert_communication for errors."""
    row = build_communication_row(customer_id, channel, content, status, metadata)
    return insert_communication(row)


def placeholder_communication(row: dict[str, Any]) -> Communication:
    """
    In-memory stand-in for a row that could not be persisted.

    Only the SMS/WhatsApp send path uses this, so the sender's flow completes
    even when the database is unavailable.
    """
    return Communication(id=f"mock-{int(time.time() * 1000)}", **row)


def list_customer_communications(customer_id: str) -> list[Communication]:
    """Every ledger row for a customer, most recent first."""
    try:
        result = (
            supabase_admin.table(COMMUNICATIONS_TABLE)
            .select("*")
            .eq("customer_id", customer_id)
            .order("sent_at", desc=True)
            .execute()
        )
    except Exception as e:
        raise PersistenceError(COMMUNICATIONS_TABLE, str(e)) from e

    return [Communication(**row) for row in result.data or []]
