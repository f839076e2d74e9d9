"""
Audit Trail Ledger

Append-only audit sink. Organization entries are linked by a SHA-256 hash
chain so any later tampering is detectable.

Callers record after their primary mutation commits. A failed write on a
success path is logged and swallowed; a failed write for a denial or a
danger-severity event is escalated as AuditWriteError.
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from audit_trail.taxonomy import (
    get_action_definition,
    is_security_event,
    render_detail,
    render_object_label,
)
from backend.config import get_settings
from backend.models.audit_log import AuditLogEntry

if TYPE_CHECKING:
    from backend.middleware.rbac import CurrentUser

logger = logging.getLogger(__name__)

GENESIS_HASH = "GENESIS"
MAX_SEQUENCE_RETRIES = 3


class AuditWriteError(Exception):
    """A security-relevant audit event could not be persisted."""

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"Failed to persist security audit event {event_type!r}")


def normalize_details(details: dict[str, Any] | None) -> dict[str, Any]:
    """JSON-safe copy of a payload (UUIDs, datetimes and enums become strings)."""
    return json.loads(json.dumps(details or {}, default=str))


def canonical_content(
    event_type: str,
    details: dict[str, Any],
    success: bool,
    user_id: UUID | None,
    organization_id: UUID | None,
) -> dict[str, Any]:
    """The fields covered by content_hash."""
    return {
        "event_type": event_type,
        "event_details": details,
        "success": success,
        "user_id": str(user_id) if user_id else None,
        "organization_id": str(organization_id) if organization_id else None,
    }


def compute_content_hash(content: dict[str, Any]) -> str:
    content_json = json.dumps(content, sort_keys=True, default=str)
    return hashlib.sha256(content_json.encode()).hexdigest()


def client_context(request: Request | None) -> tuple[str | None, str | None]:
    """Client IP (proxy aware) and user agent from a request."""
    if request is None:
        return None, None
    client_ip = request.headers.get(
        "x-forwarded-for", request.client.host if request.client else None
    )
    if client_ip and "," in client_ip:
        client_ip = client_ip.split(",")[0].strip()
    user_agent = request.headers.get("user-agent")
    return client_ip, user_agent[:500] if user_agent else None


class AuditLedger:
    """
    Append-only audit ledger.

    Each chained entry contains:
    - entry_hash: SHA-256 of (previous_hash + content + timestamp)
    - previous_hash: hash of the preceding entry in the organization
    - sequence_number: monotonically increasing per organization
    - content_hash: SHA-256 of the canonical event content
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    async def record(
        self,
        event_type: str,
        details: dict[str, Any] | None = None,
        *,
        success: bool = True,
        actor_id: UUID | None = None,
        organization_id: UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> dict | None:
        """
        Append an event and commit it.

        Returns the created entry as a dict, or None when a non-security
        write failed.
        """
        payload = normalize_details(details)

        for attempt in range(1, MAX_SEQUENCE_RETRIES + 1):
            try:
                entry = await self._append(
                    event_type, payload, success, actor_id, organization_id, ip_address, user_agent
                )
                await self.db.commit()
                break
            except IntegrityError:
                # Another writer took the same sequence number; re-read the chain head
                await self.db.rollback()
                if attempt == MAX_SEQUENCE_RETRIES:
                    return self._handle_failure(event_type, success)
                logger.info(f"Audit sequence conflict for {event_type}, retrying ({attempt})")
            except SQLAlchemyError:
                await self.db.rollback()
                return self._handle_failure(event_type, success)

        severity = get_action_definition(event_type).severity
        log = logger.warning if not success else logger.info
        log(
            f"Audit event {event_type} recorded "
            f"(severity={severity.value}, org={organization_id}, seq={entry.sequence_number})"
        )
        return self._entry_to_dict(entry)

    async def record_for_user(
        self,
        user: "CurrentUser",
        event_type: str,
        details: dict[str, Any] | None = None,
        *,
        success: bool = True,
        request: Request | None = None,
    ) -> dict | None:
        """Record with the real identity of the caller, mimicked role as metadata."""
        ip_address, user_agent = client_context(request)
        return await self.record(
            event_type,
            {**(details or {}), **user.audit_context()},
            success=success,
            actor_id=user.id,
            organization_id=user.organization_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    async def _append(
        self,
        event_type: str,
        details: dict[str, Any],
        success: bool,
        actor_id: UUID | None,
        organization_id: UUID | None,
        ip_address: str | None,
        user_agent: str | None,
    ) -> AuditLogEntry:
        now = datetime.now(timezone.utc)
        content = canonical_content(event_type, details, success, actor_id, organization_id)
        content_hash = compute_content_hash(content)

        sequence_number = None
        previous_hash = None
        entry_hash = None
        if organization_id is not None and self.settings.audit_chain_enabled:
            prev = await self._get_latest_entry(organization_id)
            previous_hash = prev.entry_hash if prev else GENESIS_HASH
            sequence_number = (prev.sequence_number + 1) if prev else 1
            content_json = json.dumps(content, sort_keys=True, default=str)
            hash_input = f"{previous_hash}|{content_json}|{now.isoformat()}"
            entry_hash = hashlib.sha256(hash_input.encode()).hexdigest()

        entry = AuditLogEntry(
            id=uuid4(),
            organization_id=organization_id,
            user_id=actor_id,
            event_type=event_type,
            event_details=details,
            success=success,
            sequence_number=sequence_number,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
            content_hash=content_hash,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=now,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    def _handle_failure(self, event_type: str, success: bool) -> None:
        if is_security_event(event_type, success):
            logger.critical(
                f"SECURITY AUDIT WRITE FAILED for {event_type}; negative security event not persisted",
                exc_info=True,
            )
            raise AuditWriteError(event_type)
        logger.exception(f"Audit write failed for {event_type}; primary operation unaffected")
        return None

    async def get_entry(
        self,
        entry_id: UUID,
        organization_id: UUID,
    ) -> dict | None:
        """Get a single audit entry by ID within an organization."""
        result = await self.db.execute(
            select(AuditLogEntry).where(
                AuditLogEntry.id == entry_id,
                AuditLogEntry.organization_id == organization_id,
            )
        )
        entry = result.scalar_one_or_none()
        if not entry:
            return None
        return self._entry_to_dict(entry)

    async def get_entries(
        self,
        organization_id: UUID,
        event_types: list[str] | None = None,
        exclude_event_types: list[str] | None = None,
        user_id: UUID | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict]:
        """Get audit entries for an organization, newest first."""
        query = select(AuditLogEntry).where(
            AuditLogEntry.organization_id == organization_id
        )
        if event_types is not None:
            query = query.where(AuditLogEntry.event_type.in_(event_types))
        if exclude_event_types:
            query = query.where(AuditLogEntry.event_type.not_in(exclude_event_types))
        if user_id is not None:
            query = query.where(AuditLogEntry.user_id == user_id)

        query = query.order_by(
            AuditLogEntry.created_at.desc(),
            AuditLogEntry.sequence_number.desc(),
        )
        query = query.offset(offset).limit(limit)

        result = await self.db.execute(query)
        return [self._entry_to_dict(e) for e in result.scalars().all()]

    async def get_entry_count(
        self,
        organization_id: UUID,
    ) -> int:
        """Get total entry count for an organization."""
        result = await self.db.execute(
            select(func.count(AuditLogEntry.id)).where(
                AuditLogEntry.organization_id == organization_id
            )
        )
        return result.scalar() or 0

    async def _get_latest_entry(self, organization_id: UUID) -> AuditLogEntry | None:
        """Get the most recent chained entry for hash chaining."""
        result = await self.db.execute(
            select(AuditLogEntry)
            .where(
                AuditLogEntry.organization_id == organization_id,
                AuditLogEntry.sequence_number.is_not(None),
            )
            .order_by(AuditLogEntry.sequence_number.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def _entry_to_dict(self, entry: AuditLogEntry) -> dict:
        """Convert an audit entry to a dict, rendered through the taxonomy."""
        definition = get_action_definition(entry.event_type)
        details = entry.event_details or {}
        return {
            "id": str(entry.id),
            "organization_id": str(entry.organization_id) if entry.organization_id else None,
            "user_id": str(entry.user_id) if entry.user_id else None,
            "event_type": entry.event_type,
            "event_details": details,
            "success": entry.success,
            "label": definition.label,
            "severity": definition.severity.value,
            "category": definition.category,
            "icon": definition.icon,
            "summary": render_detail(entry.event_type, details),
            "object_label": render_object_label(entry.event_type, details),
            "sequence_number": entry.sequence_number,
            "entry_hash": entry.entry_hash,
            "previous_hash": entry.previous_hash,
            "ip_address": entry.ip_address,
            "created_at": entry.created_at.isoformat(),
        }
