"""
Webhook endpoints - leads, customers and storefront orders.

Order of checks for every endpoint:
1. Diagnostic log entry (request id assigned)
2. Content type + JSON body (400)
3. Secret -> tenant / integration (401)
4. Schema validation (400 with field list)
5. Primary write, committed
6. Best-effort side effects (notification enqueue), then background dispatch
"""
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from astra.api.deps import get_notification_worker
from astra.api.webhook_sources import parse_shopify_order, parse_woocommerce_order
from astra.config import get_settings
from astra.database import get_db
from astra.errors import AstraError, AuthenticationError, InternalError
from astra.models.integration import Integration
from astra.models.tenant import Tenant
from astra.schemas.webhook_payloads import (
    CustomerWebhookPayload,
    LeadWebhookPayload,
    ShopifyOrderPayload,
    WooCommerceOrderPayload,
)
from astra.services.customers import create_customer
from astra.services.leads import create_lead
from astra.services.notification_queue import (
    NotificationWorker,
    enqueue_notification,
    trigger_dispatch,
)
from astra.services.orders import ingest_order
from astra.services.secret_registry import (
    resolve_integration,
    resolve_integration_by_signature,
    resolve_tenant,
)
from astra.services.validation import parse_json_body, require_json_content_type, validate_payload
from astra.services.webhook_logger import WebhookDiagnosticLogger, get_webhook_logger
from astra.utils.logging import bind_log_fields, bound_log_context
from astra.utils.side_effects import SideEffect, run_side_effects
from astra.utils.webhook_signatures import DOMAIN_HEADERS, SIGNATURE_HEADERS, normalize_store_domain

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhook", tags=["webhooks"])

MAX_LOGGED_BODY = 4000


def _webhook_secret(request: Request) -> Optional[str]:
    return request.headers.get("x-webhook-secret") or request.headers.get("webhook-secret")


def _loggable_body(raw: bytes) -> Any:
    try:
        return json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return raw[:MAX_LOGGED_BODY].decode("utf-8", errors="replace")


async def _begin(request: Request, wlog: WebhookDiagnosticLogger) -> tuple[str, bytes]:
    raw = await request.body()
    request_id = wlog.log_request(
        request.method,
        str(request.url),
        dict(request.headers),
        _loggable_body(raw),
        dict(request.query_params),
    )
    return request_id, raw


@asynccontextmanager
async def _diagnosed(wlog: WebhookDiagnosticLogger, request_id: str, label: str):
    """Record the outcome of a webhook in the diagnostic log."""
    started = time.monotonic()
    with bound_log_context(request_id=request_id):
        try:
            yield
        except AstraError as e:
            elapsed = int((time.monotonic() - started) * 1000)
            wlog.log_response(request_id, e.status_code, e.message, e.to_dict(), elapsed)
            raise
        except Exception as e:
            logger.error("%s webhook failed: %s", label, str(e), exc_info=True)
            wlog.log_error(request_id, e, {"endpoint": label})
            raise InternalError() from e


def _read_payload(request: Request, raw: bytes) -> Any:
    require_json_content_type(request.headers.get("content-type"))
    return parse_json_body(raw)


async def _authenticate_tenant(db: AsyncSession, request: Request) -> Tenant:
    secret = _webhook_secret(request)
    if not secret:
        raise AuthenticationError("Missing webhook secret")
    tenant = await resolve_tenant(db, secret)
    if tenant is None:
        logger.warning("Invalid webhook secret on %s", request.url.path)
        raise AuthenticationError("Invalid webhook secret")
    bind_log_fields(tenant_id=tenant.id)
    return tenant


async def _authenticate_integration(
    db: AsyncSession,
    request: Request,
    platform: str,
    raw: bytes,
) -> Integration:
    """
    Platform signature over the raw body first; the integration's shared
    secret in x-webhook-secret is accepted when no signature is sent.
    """
    signature = request.headers.get(SIGNATURE_HEADERS[platform])
    if signature:
        domain = normalize_store_domain(
            request.query_params.get("domain") or request.headers.get(DOMAIN_HEADERS[platform])
        )
        if not domain:
            raise AuthenticationError("Missing store domain")
        integration = await resolve_integration_by_signature(db, platform, domain, signature, raw)
        if integration is None:
            logger.warning("Invalid %s webhook signature for %s", platform, domain)
            raise AuthenticationError("Invalid webhook signature")
    else:
        secret = _webhook_secret(request)
        if not secret:
            raise AuthenticationError("Missing webhook signature")
        integration = await resolve_integration(db, secret, platform)
        if integration is None:
            logger.warning("Invalid %s webhook secret", platform)
            raise AuthenticationError("Invalid webhook secret")
    bind_log_fields(tenant_id=integration.tenant_id, integration_id=integration.id, platform=platform)
    return integration


def _enqueue_effect(db: AsyncSession, **job: Any) -> SideEffect:
    async def run() -> None:
        async with db.begin_nested():
            await enqueue_notification(db, **job)
    return SideEffect(f"enqueue_{job['kind']}", run)


def _lead_data(lead) -> dict:
    return {
        "id": str(lead.id),
        "name": lead.name,
        "email": lead.email,
        "phone": lead.phone,
        "source": lead.source,
        "logistic_status": lead.logistic_status,
        "cod_status": lead.cod_status,
        "kpi_status": lead.kpi_status,
        "notes": lead.notes,
        "created_at": lead.created_at.isoformat() if lead.created_at else None,
    }


def _customer_data(customer) -> dict:
    return {
        "id": str(customer.id),
        "name": customer.name,
        "email": customer.email,
        "phone": customer.phone,
        "address": customer.address,
        "source": customer.source,
        "order_id": customer.order_ref,
        "created_at": customer.created_at.isoformat() if customer.created_at else None,
    }


@router.post("/lead", status_code=201)
async def lead_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    wlog: WebhookDiagnosticLogger = Depends(get_webhook_logger),
    worker: Optional[NotificationWorker] = Depends(get_notification_worker),
):
    """Create a CRM lead from a third-party lead source."""
    request_id, raw = await _begin(request, wlog)
    async with _diagnosed(wlog, request_id, "lead"):
        payload = _read_payload(request, raw)
        tenant = await _authenticate_tenant(db, request)
        data = validate_payload(payload, LeadWebhookPayload)
        wlog.log_processing_step(request_id, "validated", {"tenant_id": str(tenant.id)})

        lead = await create_lead(db, tenant.id, data.model_dump())
        await db.commit()
        body = {"success": True, "message": "Lead created successfully", "data": _lead_data(lead)}

        effects = []
        if tenant.wants_telegram:
            effects.append(_enqueue_effect(
                db, tenant_id=tenant.id, kind="new_lead", lead_id=lead.id,
                payload=body["data"], max_attempts=get_settings().notification_max_attempts,
            ))
        failed = await run_side_effects(effects, tenant_id=str(tenant.id), request_id=request_id)
        await db.commit()
        if effects and not failed:
            background_tasks.add_task(trigger_dispatch, worker)

        wlog.log_response(request_id, 201, body["message"], {"lead_id": body["data"]["id"]})
        return JSONResponse(status_code=201, content=body)


@router.post("/customer", status_code=201)
async def customer_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    wlog: WebhookDiagnosticLogger = Depends(get_webhook_logger),
):
    """Create a customer; 409 if the tenant already has one with this email."""
    request_id, raw = await _begin(request, wlog)
    async with _diagnosed(wlog, request_id, "customer"):
        payload = _read_payload(request, raw)
        tenant = await _authenticate_tenant(db, request)
        data = validate_payload(payload, CustomerWebhookPayload)
        wlog.log_processing_step(request_id, "validated", {"tenant_id": str(tenant.id)})

        customer = await create_customer(db, tenant.id, data)
        await db.commit()

        body = {
            "success": True,
            "message": "Customer created successfully",
            "data": _customer_data(customer),
        }
        wlog.log_response(request_id, 201, body["message"], {"customer_id": body["data"]["id"]})
        return JSONResponse(status_code=201, content=body)


async def _order_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession,
    wlog: WebhookDiagnosticLogger,
    worker: Optional[NotificationWorker],
    platform: str,
):
    schema, parser = {
        "shopify": (ShopifyOrderPayload, parse_shopify_order),
        "woocommerce": (WooCommerceOrderPayload, parse_woocommerce_order),
    }[platform]

    request_id, raw = await _begin(request, wlog)
    async with _diagnosed(wlog, request_id, f"{platform}_order"):
        payload = _read_payload(request, raw)
        integration = await _authenticate_integration(db, request, platform, raw)
        normalized = parser(validate_payload(payload, schema), payload)
        wlog.log_processing_step(request_id, "normalized", {
            "integration_id": str(integration.id),
            "external_order_id": normalized.external_order_id,
            "items": len(normalized.items),
        })

        result = await ingest_order(db, integration, normalized)
        await db.commit()
        order = result.order

        body = {
            "success": True,
            "data": {
                "order_id": str(order.id),
                "customer_id": str(result.customer.id) if result.customer else None,
                "external_order_id": order.external_order_id,
                "status": order.status,
                "total_amount": order.total_amount,
                "items_count": result.items_count,
                "created": result.created,
            },
        }

        effects = []
        tenant = await db.get(Tenant, integration.tenant_id)
        if result.created and tenant is not None and tenant.wants_telegram:
            effects.append(_enqueue_effect(
                db, tenant_id=tenant.id, kind="new_order", order_id=order.id,
                payload={
                    "platform": platform,
                    "store": integration.domain,
                    "external_order_id": order.external_order_id,
                    "status": order.status,
                    "total_amount": order.total_amount,
                    "currency": order.currency,
                    "customer_name": normalized.customer.name,
                    "customer_email": normalized.customer.email,
                    "customer_phone": normalized.customer.phone,
                    "items": [
                        {"name": i.product_name, "quantity": i.quantity, "unit_price": i.unit_price}
                        for i in normalized.items
                    ],
                },
                max_attempts=get_settings().notification_max_attempts,
            ))
        failed = await run_side_effects(effects, tenant_id=str(integration.tenant_id), request_id=request_id)
        await db.commit()
        if effects and not failed:
            background_tasks.add_task(trigger_dispatch, worker)

        wlog.log_response(request_id, 200, "Order processed", body["data"])
        return JSONResponse(status_code=200, content=body)


@router.post("/orders/shopify")
async def shopify_order_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    wlog: WebhookDiagnosticLogger = Depends(get_webhook_logger),
    worker: Optional[NotificationWorker] = Depends(get_notification_worker),
):
    """Shopify order create/update webhook. Idempotent on the Shopify order id."""
    return await _order_webhook(request, background_tasks, db, wlog, worker, "shopify")


@router.post("/orders/woocommerce")
async def woocommerce_order_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    wlog: WebhookDiagnosticLogger = Depends(get_webhook_logger),
    worker: Optional[NotificationWorker] = Depends(get_notification_worker),
):
    """WooCommerce order create/update webhook. Idempotent on the WooCommerce order id."""
    return await _order_webhook(request, background_tasks, db, wlog, worker, "woocommerce")
