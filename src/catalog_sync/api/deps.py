"""FastAPI dependency providers. Tests swap these out via app.dependency_overrides."""
import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException

from catalog_sync.config import Settings, get_settings
from catalog_sync.db.engine import get_engine
from catalog_sync.dlq.replay import DlqReplayService
from catalog_sync.dlq.store import DlqStore
from catalog_sync.messaging.channels import ChannelSet
from catalog_sync.messaging.publisher import SyncEventPublisher
from catalog_sync.messaging.transport import Transport, get_transport
from catalog_sync.reconciler.sync_status import SyncStatusReconciler
from catalog_sync.reliability.idempotency import IdempotencyLedger
from catalog_sync.webhooks.allowlist import IpAllowList
from catalog_sync.webhooks.verifier import VerifierConfig, WebhookVerifier


def get_verifier(settings: Settings = Depends(get_settings)) -> WebhookVerifier:
    return WebhookVerifier(VerifierConfig.from_settings(settings))


def get_allowlist(settings: Settings = Depends(get_settings)) -> IpAllowList:
    return IpAllowList(settings.allowed_ips)


def get_ledger(
    engine=Depends(get_engine), settings: Settings = Depends(get_settings)
) -> IdempotencyLedger:
    return IdempotencyLedger(engine, settings.idempotency_ttl_days)


def get_reconciler(
    engine=Depends(get_engine),
    ledger: IdempotencyLedger = Depends(get_ledger),
    settings: Settings = Depends(get_settings),
) -> SyncStatusReconciler:
    return SyncStatusReconciler(engine, ledger, settings.partial_error_limit)


def get_publisher(
    transport: Transport = Depends(get_transport),
    settings: Settings = Depends(get_settings),
) -> SyncEventPublisher:
    channels = ChannelSet.for_prefix(settings.channel_prefix, settings.retry_delays_seconds)
    return SyncEventPublisher(transport, channels)


def get_dlq_store(engine=Depends(get_engine)) -> DlqStore:
    return DlqStore(engine)


def get_replay_service(
    store: DlqStore = Depends(get_dlq_store),
    publisher: SyncEventPublisher = Depends(get_publisher),
    ledger: IdempotencyLedger = Depends(get_ledger),
) -> DlqReplayService:
    return DlqReplayService(store, publisher, ledger)


def require_operator(
    authorization: Optional[str] = Header(default=None),
    x_operator: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Guard for the DLQ routes. When DLQ_API_TOKEN is set the caller must send
    "Authorization: Bearer <token>". Returns the operator name from X-Operator.
    """
    token = settings.dlq_api_token
    if token:
        expected = f"Bearer {token}"
        if not authorization or not hmac.compare_digest(
            authorization.strip().encode("utf-8"), expected.encode("utf-8")
        ):
            raise HTTPException(status_code=401, detail="Invalid or missing bearer token")
    return (x_operator or "").strip() or "system"
