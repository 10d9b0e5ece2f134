from __future__ import annotations

import hashlib
import hmac
import json
import logging
from enum import Enum
from typing import Iterable, Optional, Protocol

import httpx

from insign.core.config import settings
from insign.models.base import utcnow
from insign.models.signature import Participant, SignatureRequest

logger = logging.getLogger("insign.notifications")

SIGNATURE_HEADER = "X-Insign-Signature"
EVENT_HEADER = "X-Insign-Event"


class NotificationEvent(str, Enum):
    SIGNATURE_REQUESTED = "signature_requested"
    REQUEST_COMPLETED = "request_completed"
    REQUEST_DECLINED = "request_declined"
    REQUEST_CANCELLED = "request_cancelled"


class NotificationDispatcher(Protocol):
    def notify(
        self,
        participant: Participant,
        request: SignatureRequest,
        event: NotificationEvent,
        signing_url: str | None = None,
    ) -> bool:
        ...


def build_payload(
    participant: Participant,
    request: SignatureRequest,
    event: NotificationEvent,
    signing_url: str | None = None,
) -> dict:
    data = {
        "request_id": str(request.id),
        "org_id": str(request.org_id),
        "title": request.title,
        "status": request.status.value,
        "workflow_type": request.workflow_type.value,
        "participant": {
            "id": str(participant.id),
            "email": participant.email,
            "full_name": participant.full_name,
            "role": participant.role.value,
            "order_index": participant.order_index,
        },
    }
    if signing_url:
        data["signing_url"] = signing_url
    return {"event": event.value, "timestamp": utcnow().isoformat(), "data": data}


def sign_payload(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class LoggingNotificationDispatcher:
    """Default dispatcher: delivery is handled elsewhere, so events are only logged."""

    def notify(
        self,
        participant: Participant,
        request: SignatureRequest,
        event: NotificationEvent,
        signing_url: str | None = None,
    ) -> bool:
        logger.info(
            "Notification %s for request %s to %s%s",
            event.value,
            request.id,
            participant.email,
            " (signing link issued)" if signing_url else "",
        )
        return True


class WebhookNotificationDispatcher:
    """POSTs workflow events as JSON, signed with HMAC-SHA256 when a secret is configured."""

    def __init__(
        self,
        url: str,
        secret: str | None = None,
        *,
        timeout_seconds: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self.secret = secret
        self._timeout = timeout_seconds or settings.webhook_timeout_seconds or 10.0
        self._client = client

    def notify(
        self,
        participant: Participant,
        request: SignatureRequest,
        event: NotificationEvent,
        signing_url: str | None = None,
    ) -> bool:
        payload = build_payload(participant, request, event, signing_url)
        body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        headers = {"Content-Type": "application/json", EVENT_HEADER: event.value}
        if self.secret:
            headers[SIGNATURE_HEADER] = sign_payload(self.secret, body)

        try:
            if self._client is not None:
                response = self._client.post(self.url, content=body, headers=headers, timeout=self._timeout)
            else:
                response = httpx.post(self.url, content=body, headers=headers, timeout=self._timeout)
        except httpx.HTTPError as exc:
            logger.warning("Webhook %s for request %s failed: %s", event.value, request.id, exc)
            return False

        if response.status_code >= 300:
            logger.warning(
                "Webhook %s for request %s answered %s", event.value, request.id, response.status_code
            )
            return False
        return True


class CompositeNotificationDispatcher:
    def __init__(self, dispatchers: Iterable[NotificationDispatcher]) -> None:
        self.dispatchers = list(dispatchers)

    def notify(
        self,
        participant: Participant,
        request: SignatureRequest,
        event: NotificationEvent,
        signing_url: str | None = None,
    ) -> bool:
        delivered = True
        for dispatcher in self.dispatchers:
            if not safe_notify(dispatcher, participant, request, event, signing_url):
                delivered = False
        return delivered


def safe_notify(
    dispatcher: NotificationDispatcher,
    participant: Participant,
    request: SignatureRequest,
    event: NotificationEvent,
    signing_url: str | None = None,
) -> bool:
    """Best-effort delivery: failures are logged and reported, never raised."""
    try:
        delivered = bool(dispatcher.notify(participant, request, event, signing_url))
    except Exception as exc:  # noqa: BLE001 - notifications never fail a transition
        logger.warning(
            "Notification %s for request %s to %s raised: %s",
            event.value,
            request.id,
            participant.email,
            exc,
            exc_info=True,
        )
        return False
    if not delivered:
        logger.warning(
            "Notification %s for request %s to %s was not delivered",
            event.value,
            request.id,
            participant.email,
        )
    return delivered


def build_default_dispatcher(
    webhook_url: Optional[str] = None,
    webhook_secret: Optional[str] = None,
) -> NotificationDispatcher:
    url = webhook_url if webhook_url is not None else settings.webhook_url
    secret = webhook_secret if webhook_secret is not None else settings.webhook_secret
    logging_dispatcher = LoggingNotificationDispatcher()
    if not url:
        return logging_dispatcher
    return CompositeNotificationDispatcher(
        [logging_dispatcher, WebhookNotificationDispatcher(url, secret)]
    )
