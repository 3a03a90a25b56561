"""
Lead creation, updates, tags and the append-only lead event log.

Creating a lead writes the lead row and its "created" event in the same
transaction. Everything after that (tags, update events) is secondary and
runs inside a savepoint so a failure leaves the primary write untouched.
"""
import logging
import uuid
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from astra.models.lead import DEFAULT_TAG_COLOR, Lead, LeadEvent, Tag, lead_tags
from astra.utils.side_effects import SideEffect, run_side_effects

logger = logging.getLogger(__name__)

LEAD_FIELDS = (
    "name", "email", "phone", "source",
    "logistic_status", "cod_status", "kpi_status", "notes",
)


async def append_lead_event(
    db: AsyncSession,
    lead_id: uuid.UUID,
    event_type: str,
    details: Optional[dict] = None,
) -> LeadEvent:
    """The only writer of lead events."""
    lead_event = LeadEvent(lead_id=lead_id, event_type=event_type, details=details or {})
    db.add(lead_event)
    await db.flush()
    return lead_event


async def create_lead(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    payload: dict[str, Any],
    tags: Optional[list[str]] = None,
) -> Lead:
    """
    Insert a lead plus exactly one "created" event, then attach *tags*.

    The lead and its event share a savepoint: if either write fails both are
    rolled back and the error propagates. Tag association runs afterwards as
    a best-effort side effect; a failure leaves the lead untagged. Caller commits.
    """
    async with db.begin_nested():
        lead = Lead(tenant_id=tenant_id, **{k: payload.get(k) for k in LEAD_FIELDS})
        db.add(lead)
        await db.flush()
        await append_lead_event(
            db, lead.id, "created",
            {"source": lead.source, "notes": lead.notes},
        )
    logger.info("Lead created: %s source=%s", str(lead.id)[:8], lead.source,
                extra={"tenant_id": str(tenant_id), "lead_id": str(lead.id)})

    if tags:
        await run_side_effects(
            [SideEffect("tag_association", lambda: set_lead_tags(db, lead, tags))],
            tenant_id=str(tenant_id), lead_id=str(lead.id),
        )
    return lead


async def resolve_tags(db: AsyncSession, tenant_id: uuid.UUID, names: list[str]) -> list[Tag]:
    """Map tag names to Tag rows, creating missing ones with the default color."""
    tags = []
    seen = set()
    for raw in names:
        name = raw.strip()
        if not name or name in seen:
            continue
        seen.add(name)
        result = await db.execute(select(Tag).where(Tag.tenant_id == tenant_id, Tag.name == name))
        tag = result.scalar_one_or_none()
        if tag is None:
            tag = Tag(tenant_id=tenant_id, name=name, color=DEFAULT_TAG_COLOR)
            db.add(tag)
            await db.flush()
        tags.append(tag)
    return tags


async def set_lead_tags(db: AsyncSession, lead: Lead, names: list[str]) -> list[Tag]:
    """Replace a lead's tags. Runs in a savepoint; raises on failure."""
    async with db.begin_nested():
        tags = await resolve_tags(db, lead.tenant_id, names)
        await db.execute(delete(lead_tags).where(lead_tags.c.lead_id == lead.id))
        if tags:
            await db.execute(
                lead_tags.insert(),
                [{"lead_id": lead.id, "tag_id": tag.id} for tag in tags],
            )
    return tags


async def get_lead_tag_names(db: AsyncSession, lead_id: uuid.UUID) -> list[str]:
    result = await db.execute(
        select(Tag.name)
        .join(lead_tags, lead_tags.c.tag_id == Tag.id)
        .where(lead_tags.c.lead_id == lead_id)
        .order_by(Tag.name)
    )
    return list(result.scalars().all())


async def update_lead(db: AsyncSession, lead: Lead, changes: dict[str, Any]) -> list[str]:
    """Apply field changes to a lead. Returns the names of the fields that changed."""
    updated = []
    for key, value in changes.items():
        if key in LEAD_FIELDS and getattr(lead, key) != value:
            setattr(lead, key, value)
            updated.append(key)
    await db.flush()
    return updated


async def record_lead_update(db: AsyncSession, lead: Lead, updated_fields: list[str]) -> None:
    """Append a lead_updated event in a savepoint. Raises on failure."""
    async with db.begin_nested():
        await append_lead_event(db, lead.id, "lead_updated", {"updated_fields": updated_fields})
