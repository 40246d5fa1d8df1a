"""
Inbound marketplace webhooks.

The marketplace retries on non-2xx, so every outcome after authentication
returns 200, including parse errors and internal failures. Only a failed
authenticity check returns 401.
"""
import logging
import uuid

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from catalog_sync.api.deps import get_allowlist, get_publisher, get_reconciler, get_verifier
from catalog_sync.config import Settings, get_settings
from catalog_sync.messaging.publisher import SyncEventPublisher
from catalog_sync.models.envelope import SyncEvent, utcnow
from catalog_sync.models.webhooks import CatalogStatusWebhook, MenuImportRequestWebhook
from catalog_sync.reconciler.sync_status import SyncStatusReconciler
from catalog_sync.webhooks.allowlist import IpAllowList, client_ip
from catalog_sync.webhooks.verifier import WebhookVerifier

logger = logging.getLogger(__name__)

router = APIRouter()

SERVICE_NAME = "catalog-sync-webhooks"


async def _read_body(request: Request) -> str:
    return (await request.body()).decode("utf-8", errors="replace")


def _unauthorized(correlation_id: str, error) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={
            "success": False,
            "correlationId": correlation_id,
            "error": error or "Invalid webhook authentication.",
        },
    )


def _internal_error(correlation_id: str) -> dict:
    # Still a 200 so the marketplace does not redeliver; `error` kept for older clients
    return {
        "success": False,
        "correlationId": correlation_id,
        "message": "Internal processing error",
        "error": "Internal processing error",
    }


@router.post("/catalog-status")
async def catalog_status(
    request: Request,
    verifier: WebhookVerifier = Depends(get_verifier),
    allowlist: IpAllowList = Depends(get_allowlist),
    reconciler: SyncStatusReconciler = Depends(get_reconciler),
):
    """Catalog import outcome reported by the marketplace."""
    correlation_id = str(uuid.uuid4())
    raw_body = await _read_body(request)
    ip = client_ip(request.headers, request.client.host if request.client else None)
    logger.info(
        "Received catalog status webhook. CorrelationId=%s, ClientIP=%s, BodyLength=%d",
        correlation_id,
        ip,
        len(raw_body),
    )

    verification = verifier.validate(request.headers, raw_body, correlation_id)
    if not verification.is_valid:
        logger.warning(
            "Webhook security validation failed. CorrelationId=%s, Error=%s",
            correlation_id,
            verification.error,
        )
        return _unauthorized(correlation_id, verification.error)

    try:
        if not allowlist.is_allowed(ip):
            # Logged only; rejecting would make the sender retry
            logger.warning(
                "Webhook sender not in allow-list. CorrelationId=%s, ClientIP=%s",
                correlation_id,
                ip,
            )

        try:
            webhook = CatalogStatusWebhook.model_validate_json(raw_body).normalized()
        except ValidationError:
            logger.warning(
                "Failed to parse catalog status webhook. CorrelationId=%s, Body=%s",
                correlation_id,
                raw_body,
            )
            return {
                "success": True,
                "correlationId": correlation_id,
                "message": "Webhook received but could not be parsed",
            }

        logger.info(
            "Catalog import status received. CorrelationId=%s, VendorCode=%s, ImportId=%s, Status=%s",
            correlation_id,
            webhook.vendor_code,
            webhook.import_id,
            webhook.status,
        )

        status = (webhook.status or "").lower()
        if status in ("completed", "done"):
            reconciler.handle_completed(webhook, raw_body, correlation_id)
        elif status == "failed":
            reconciler.handle_failed(webhook, raw_body, correlation_id)
        elif status == "partial":
            reconciler.handle_partial(webhook, raw_body, correlation_id)
        else:
            logger.warning(
                "Unknown catalog import status. CorrelationId=%s, Status=%s",
                correlation_id,
                webhook.status,
            )

        return {
            "success": True,
            "correlationId": correlation_id,
            "message": f"Status '{webhook.status}' processed successfully",
        }
    except Exception:
        logger.exception("Error processing catalog status webhook. CorrelationId=%s", correlation_id)
        return _internal_error(correlation_id)


@router.post("/menu-import-request")
async def menu_import_request(
    request: Request,
    verifier: WebhookVerifier = Depends(get_verifier),
    publisher: SyncEventPublisher = Depends(get_publisher),
    settings: Settings = Depends(get_settings),
):
    """The marketplace asks for a fresh catalog push for one vendor."""
    correlation_id = str(uuid.uuid4())
    raw_body = await _read_body(request)
    ip = client_ip(request.headers, request.client.host if request.client else None)
    logger.info(
        "Received menu import request webhook. CorrelationId=%s, ClientIP=%s",
        correlation_id,
        ip,
    )

    verification = verifier.validate(request.headers, raw_body, correlation_id)
    if not verification.is_valid:
        logger.warning(
            "Webhook security validation failed. CorrelationId=%s, Error=%s",
            correlation_id,
            verification.error,
        )
        return _unauthorized(correlation_id, verification.error)

    try:
        try:
            webhook = MenuImportRequestWebhook.model_validate_json(raw_body)
        except ValidationError:
            logger.warning(
                "Failed to parse menu import request. CorrelationId=%s", correlation_id
            )
            webhook = None

        if webhook is not None:
            logger.info(
                "Menu import requested. CorrelationId=%s, VendorCode=%s, Reason=%s",
                correlation_id,
                webhook.vendor_code,
                webhook.reason,
            )
            account_id = settings.vendor_accounts.get(webhook.vendor_code or "")
            if account_id:
                event = SyncEvent.new(account_id, schema_version=settings.schema_version)
                await publisher.publish(event)
                logger.info(
                    "Menu import request published sync event. CorrelationId=%s, EventCorrelationId=%s",
                    correlation_id,
                    event.correlation_id,
                )
            else:
                logger.warning(
                    "No account mapped for vendor %s. CorrelationId=%s",
                    webhook.vendor_code,
                    correlation_id,
                )

        return {
            "success": True,
            "correlationId": correlation_id,
            "message": "Menu import request received",
        }
    except Exception:
        logger.exception("Error processing menu import request. CorrelationId=%s", correlation_id)
        return _internal_error(correlation_id)


@router.get("/health")
def health():
    return {"status": "healthy", "timestamp": utcnow(), "service": SERVICE_NAME}
