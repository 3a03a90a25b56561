"""
Lead create and update endpoints for the dashboard.
The lead row (and its created event) or the field changes are the primary
write; the lead_updated event and tag association are best-effort and only
logged on failure.
"""
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from astra.api.deps import get_current_tenant
from astra.database import get_db
from astra.models.lead import Lead
from astra.models.tenant import Tenant
from astra.schemas.webhook_payloads import LeadCreatePayload, LeadUpdatePayload
from astra.services.leads import create_lead, get_lead_tag_names, record_lead_update, set_lead_tags, update_lead
from astra.services.validation import parse_json_body, require_json_content_type, validate_payload
from astra.utils.side_effects import SideEffect, run_side_effects

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/leads", tags=["leads"])


@router.patch("/{lead_id}")
async def patch_lead(
    lead_id: str,
    request: Request,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
):
    try:
        lead_uuid = uuid.UUID(lead_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Lead not found")

    result = await db.execute(
        select(Lead).where(Lead.id == lead_uuid, Lead.tenant_id == tenant.id)
    )
    lead = result.scalar_one_or_none()
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")

    require_json_content_type(request.headers.get("content-type"))
    changes = validate_payload(parse_json_body(await request.body()), LeadUpdatePayload)
    fields = changes.model_dump(exclude_unset=True)
    tag_names = fields.pop("tags", None)

    updated_fields = await update_lead(db, lead, fields)
    await db.commit()

    effects = []
    if updated_fields:
        effects.append(SideEffect(
            "lead_updated_event", lambda: record_lead_update(db, lead, updated_fields),
        ))
    if tag_names is not None:
        effects.append(SideEffect("tag_association", lambda: set_lead_tags(db, lead, tag_names)))
    failed = await run_side_effects(effects, tenant_id=str(tenant.id))
    await db.commit()

    return {
        "success": True,
        "data": {
            "id": str(lead.id),
            "name": lead.name,
            "email": lead.email,
            "phone": lead.phone,
            "source": lead.source,
            "logistic_status": lead.logistic_status,
            "cod_status": lead.cod_status,
            "kpi_status": lead.kpi_status,
            "notes": lead.notes,
            "tags": await get_lead_tag_names(db, lead.id),
            "updated_fields": updated_fields,
        },
        "warnings": failed,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def post_lead(
    request: Request,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
):
    require_json_content_type(request.headers.get("content-type"))
    data = validate_payload(parse_json_body(await request.body()), LeadCreatePayload)
    fields = data.model_dump()
    tag_names = fields.pop("tags", None)

    lead = await create_lead(db, tenant.id, fields, tags=tag_names)
    await db.commit()

    return {
        "success": True,
        "data": {
            "id": str(lead.id),
            "name": lead.name,
            "email": lead.email,
            "phone": lead.phone,
            "source": lead.source,
            "tags": await get_lead_tag_names(db, lead.id),
        },
    }
