"""
Audit Trail Integrity Verification

Verifies the per-organization hash chain of the audit log.
Detects tampering, deletion or corruption of audit entries.
"""

import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from audit_trail.ledger import GENESIS_HASH, canonical_content, compute_content_hash
from backend.models.audit_log import AuditLogEntry

logger = logging.getLogger(__name__)


def _result(
    is_valid: bool,
    total: int,
    checked: int,
    broken: int | None,
    message: str,
) -> dict:
    return {
        "is_valid": is_valid,
        "total_entries": total,
        "entries_checked": checked,
        "first_broken_entry": broken,
        "message": message,
    }


def content_matches(entry: AuditLogEntry) -> bool:
    """Recompute the content hash from the stored columns."""
    content = canonical_content(
        entry.event_type,
        entry.event_details or {},
        entry.success,
        entry.user_id,
        entry.organization_id,
    )
    return compute_content_hash(content) == entry.content_hash


async def verify_chain(
    db: AsyncSession,
    organization_id: UUID,
    batch_size: int = 1000,
) -> dict:
    """
    Verify the integrity of the entire hash chain for an organization.

    Checks:
    1. Sequence numbers are contiguous from 1
    2. The first entry links to GENESIS
    3. Each entry's previous_hash matches the prior entry's hash
    4. Content hashes match the stored content

    Returns:
        Dict with is_valid, total_entries, entries_checked, first_broken_entry, message
    """
    total = await _get_chained_count(db, organization_id)

    if total == 0:
        return _result(True, 0, 0, None, "No audit entries to verify")

    entries_checked = 0
    previous_hash: str | None = None
    previous_sequence = 0
    offset = 0

    while offset < total:
        result = await db.execute(
            select(AuditLogEntry)
            .where(
                AuditLogEntry.organization_id == organization_id,
                AuditLogEntry.sequence_number.is_not(None),
            )
            .order_by(AuditLogEntry.sequence_number.asc())
            .offset(offset)
            .limit(batch_size)
        )
        entries = result.scalars().all()

        if not entries:
            break

        for entry in entries:
            entries_checked += 1
            seq = entry.sequence_number

            if seq != previous_sequence + 1:
                return _result(
                    False, total, entries_checked, seq,
                    f"Sequence gap: expected {previous_sequence + 1}, got {seq}",
                )

            if seq == 1:
                if entry.previous_hash != GENESIS_HASH:
                    return _result(
                        False, total, entries_checked, seq,
                        "Genesis entry has unexpected previous_hash",
                    )
            elif entry.previous_hash != previous_hash:
                return _result(
                    False, total, entries_checked, seq,
                    f"Hash chain broken at entry #{seq}: "
                    f"expected previous_hash={(previous_hash or '')[:16]}..., "
                    f"got={(entry.previous_hash or 'None')[:16]}...",
                )

            if not content_matches(entry):
                return _result(
                    False, total, entries_checked, seq,
                    f"Content tampered at entry #{seq}: content hash mismatch",
                )

            previous_hash = entry.entry_hash
            previous_sequence = seq

        offset += batch_size

    logger.info(f"Audit chain for org {organization_id} verified: {entries_checked} entries")
    return _result(
        True, total, entries_checked, None,
        f"All {entries_checked} entries verified successfully",
    )


async def verify_entry(
    db: AsyncSession,
    entry_id: UUID,
    organization_id: UUID,
) -> dict:
    """
    Verify a single audit entry's integrity.

    Checks the entry's own content hash and its link to the previous entry.
    """
    result = await db.execute(
        select(AuditLogEntry).where(
            AuditLogEntry.id == entry_id,
            AuditLogEntry.organization_id == organization_id,
        )
    )
    entry = result.scalar_one_or_none()

    if not entry:
        return {"is_valid": False, "message": "Entry not found"}

    if not content_matches(entry):
        return {
            "is_valid": False,
            "message": "Content hash mismatch - possible tampering",
            "entry_sequence": entry.sequence_number,
        }

    if entry.sequence_number and entry.sequence_number > 1:
        prev_result = await db.execute(
            select(AuditLogEntry).where(
                AuditLogEntry.organization_id == entry.organization_id,
                AuditLogEntry.sequence_number == entry.sequence_number - 1,
            )
        )
        prev_entry = prev_result.scalar_one_or_none()

        if prev_entry is None or prev_entry.entry_hash != entry.previous_hash:
            return {
                "is_valid": False,
                "message": "Previous hash linkage broken",
                "entry_sequence": entry.sequence_number,
            }

    return {
        "is_valid": True,
        "message": "Entry integrity verified",
        "entry_sequence": entry.sequence_number,
    }


async def _get_chained_count(db: AsyncSession, organization_id: UUID) -> int:
    result = await db.execute(
        select(func.count(AuditLogEntry.id)).where(
            AuditLogEntry.organization_id == organization_id,
            AuditLogEntry.sequence_number.is_not(None),
        )
    )
    return result.scalar() or 0
