"""
Customer find-or-create.

Customers are keyed (softly) by email. resolve_customer() is idempotent:
resolving the same address with the same patch twice leaves the stored row
unchanged the second time (no write is issued at all).

Concurrent first contact for the same new address is settled by the unique
constraint on customers.email: the losing insert gets a unique violation,
re-reads the winner's row and applies its patch as an update instead.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from crm.db import supabase_admin
from crm.errors import PersistenceError
from crm.models.customer import Customer, CustomerPatch, CustomerStatus, ResolvedCustomer

logger = logging.getLogger(__name__)

CUSTOMERS_TABLE = "customers"

# Postgres SQLSTATE for unique_violation, surfaced by PostgREST as APIError.code
_UNIQUE_VIOLATION = "23505"

_NOTES_MAX_LENGTH = 1000


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_names(address: str) -> tuple[str, str]:
    """
    Derive (firstname, lastname) from an address's local part.

    "jane.doe@example.com" -> ("jane", "doe"); "jane@example.com" ->
    ("jane", "Customer"); "" -> ("Unknown", "Customer").
    """
    local = (address or "").split("@", 1)[0]
    parts = local.split(".")
    firstname = parts[0] if parts and parts[0] else "Unknown"
    lastname = parts[1] if len(parts) > 1 and parts[1] else "Customer"
    return firstname, lastname


def find_customer_by_email(email: str) -> Optional[dict]:
    client = supabase_admin
    try:
        result = (
            client.table(CUSTOMERS_TABLE)
            .select("*")
            .eq("email", email)
            .limit(1)
            .execute()
        )
    except Exception as e:
        raise PersistenceError(CUSTOMERS_TABLE, str(e)) from e
    return result.data[0] if result.data else None


def find_customer_by_phone(phone: str) -> Optional[dict]:
    """
    Match a normalised "+<digits>" number against stored phones, which may
    have been saved with or without the "+".
    """
    candidates = [phone]
    if phone.startswith("+"):
        candidates.append(phone[1:])

    client = supabase_admin
    try:
        result = (
            client.table(CUSTOMERS_TABLE)
            .select("*")
            .in_("phone", candidates)
            .limit(1)
            .execute()
        )
    except Exception as e:
        raise PersistenceError(CUSTOMERS_TABLE, str(e)) from e
    return result.data[0] if result.data else None


def apply_patch(existing: dict, patch: CustomerPatch) -> Customer:
    """
    Coalesce `patch` onto an existing row.

    Only non-empty patch values are written, and only when they differ from
    what is stored. An empty patch value never clears a populated column.
    """
    changes: dict[str, Any] = {
        key: value
        for key, value in patch.non_empty_fields().items()
        if existing.get(key) != value
    }
    if not changes:
        return Customer(**existing)

    changes["updated_at"] = _now_iso()
    client = supabase_admin
    try:
        result = (
            client.table(CUSTOMERS_TABLE)
            .update(changes)
            .eq("id", existing["id"])
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to update customer {existing['id']!r}: {e}")
        raise PersistenceError(CUSTOMERS_TABLE, str(e)) from e

    if not result.data:
        raise PersistenceError(CUSTOMERS_TABLE, "update returned no data")

    logger.info(f"Updated customer {existing['id']!r}: {sorted(k for k in changes if k != 'updated_at')}")
    return Customer(**result.data[0])


def build_new_customer_row(
    lookup_email: str,
    patch: CustomerPatch,
    sender_email: Optional[str] = None,
    source: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict[str, Any]:
    default_first, default_last = default_names(sender_email or lookup_email)
    now_iso = _now_iso()
    return {
        "firstname": patch.firstname or default_first,
        "lastname": patch.lastname or default_last,
        "email": lookup_email,
        "phone": patch.phone or "",
        "status": CustomerStatus.LEAD.value,
        "source": source,
        "notes": notes[:_NOTES_MAX_LENGTH] if notes else notes,
        "resume_url": patch.resume_url,
        "resume_data": patch.resume_data,
        "created_at": now_iso,
        "updated_at": now_iso,
    }


def resolve_customer(
    lookup_email: str,
    patch: Optional[CustomerPatch] = None,
    *,
    sender_email: Optional[str] = None,
    source: Optional[str] = None,
    notes: Optional[str] = None,
) -> ResolvedCustomer:
    """
    Find the customer whose email exactly matches `lookup_email`, or create one.

    Existing customer: non-empty `patch` fields are coalesced onto the row.
    New customer: names come from the patch, else from the local part of
    `sender_email` (or the lookup address) split on "."; status is "lead";
    `source` and `notes` describe where the contact came from.

    Raises:
        PersistenceError: any database failure.
    """
    patch = patch or CustomerPatch()
    lookup_email = lookup_email.strip()
    if not lookup_email:
        raise ValueError("lookup_email must not be empty")

    existing = find_customer_by_email(lookup_email)
    if existing:
        return ResolvedCustomer(customer=apply_patch(existing, patch), created=False)

    row = build_new_customer_row(lookup_email, patch, sender_email, source, notes)
    client = supabase_admin
    try:
        result = client.table(CUSTOMERS_TABLE).insert(row).execute()
    except Exception as e:
        if getattr(e, "code", None) != _UNIQUE_VIOLATION:
            logger.error(f"Failed to create customer {lookup_email!r}: {e}")
            raise PersistenceError(CUSTOMERS_TABLE, str(e)) from e

        # Another request created this customer between our read and insert.
        logger.info(f"Customer {lookup_email!r} created concurrently; updating instead")
        winner = find_customer_by_email(lookup_email)
        if not winner:
            raise PersistenceError(CUSTOMERS_TABLE, str(e)) from e
        return ResolvedCustomer(customer=apply_patch(winner, patch), created=False)

    if not result.data:
        raise PersistenceError(CUSTOMERS_TABLE, "insert returned no data")

    customer = Customer(**result.data[0])
    logger.info(f"Created customer {customer.id!r} for {lookup_email!r} (source: {source!r})")
    return ResolvedCustomer(customer=customer, created=True)
