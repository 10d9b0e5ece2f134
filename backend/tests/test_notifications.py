import hashlib
import hmac
import json
from uuid import uuid4

import httpx

from insign.models.signature import Participant, ParticipantRole, SignatureRequest, SignatureRequestStatus
from insign.services.notification import (
    EVENT_HEADER,
    SIGNATURE_HEADER,
    CompositeNotificationDispatcher,
    LoggingNotificationDispatcher,
    NotificationEvent,
    WebhookNotificationDispatcher,
    build_default_dispatcher,
    safe_notify,
)


def _request_and_participant() -> tuple[SignatureRequest, Participant]:
    request = SignatureRequest(
        org_id=uuid4(),
        document_id=uuid4(),
        title="NDA",
        status=SignatureRequestStatus.SENT,
        created_by_id=uuid4(),
    )
    participant = Participant(
        request_id=request.id,
        email="alice@example.com",
        full_name="Alice",
        role=ParticipantRole.SIGNER,
        order_index=0,
        access_token="never-sent-in-payload",
    )
    return request, participant


class _ExplodingDispatcher:
    def notify(self, participant, request, event, signing_url=None) -> bool:
        raise ConnectionError("mail server unreachable")


class _RefusingDispatcher:
    def notify(self, participant, request, event, signing_url=None) -> bool:
        return False


def test_webhook_dispatcher_signs_payload() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = request.content
        captured["headers"] = request.headers
        return httpx.Response(202)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    dispatcher = WebhookNotificationDispatcher("https://hooks.example.com/insign", "s3cret", client=client)
    request, participant = _request_and_participant()

    delivered = dispatcher.notify(
        participant, request, NotificationEvent.SIGNATURE_REQUESTED, "https://sign.example.com/sign/abc"
    )

    assert delivered is True
    expected = hmac.new(b"s3cret", captured["body"], hashlib.sha256).hexdigest()
    assert captured["headers"][SIGNATURE_HEADER] == expected
    assert captured["headers"][EVENT_HEADER] == "signature_requested"
    payload = json.loads(captured["body"])
    assert payload["event"] == "signature_requested"
    assert payload["data"]["request_id"] == str(request.id)
    assert payload["data"]["participant"]["email"] == "alice@example.com"
    assert payload["data"]["signing_url"] == "https://sign.example.com/sign/abc"
    assert "never-sent-in-payload" not in captured["body"].decode("utf-8")


def test_webhook_dispatcher_reports_http_errors() -> None:
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    dispatcher = WebhookNotificationDispatcher("https://hooks.example.com/insign", client=client)
    request, participant = _request_and_participant()

    assert dispatcher.notify(participant, request, NotificationEvent.REQUEST_COMPLETED) is False


def test_webhook_dispatcher_reports_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    dispatcher = WebhookNotificationDispatcher("https://hooks.example.com/insign", client=client)
    request, participant = _request_and_participant()

    assert dispatcher.notify(participant, request, NotificationEvent.REQUEST_DECLINED) is False


def test_webhook_without_secret_sends_no_signature() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["headers"] = request.headers
        return httpx.Response(200)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    dispatcher = WebhookNotificationDispatcher("https://hooks.example.com/insign", client=client)
    request, participant = _request_and_participant()

    assert dispatcher.notify(participant, request, NotificationEvent.REQUEST_CANCELLED) is True
    assert SIGNATURE_HEADER not in captured["headers"]


def test_safe_notify_swallows_dispatcher_errors(caplog) -> None:
    request, participant = _request_and_participant()

    with caplog.at_level("WARNING", logger="insign.notifications"):
        delivered = safe_notify(_ExplodingDispatcher(), participant, request, NotificationEvent.SIGNATURE_REQUESTED)

    assert delivered is False
    assert "mail server unreachable" in caplog.text


def test_composite_dispatcher_fans_out() -> None:
    request, participant = _request_and_participant()
    composite = CompositeNotificationDispatcher([LoggingNotificationDispatcher(), _RefusingDispatcher()])

    assert composite.notify(participant, request, NotificationEvent.REQUEST_COMPLETED) is False
    assert CompositeNotificationDispatcher([LoggingNotificationDispatcher()]).notify(
        participant, request, NotificationEvent.REQUEST_COMPLETED
    )


def test_default_dispatcher_adds_webhook_when_configured() -> None:
    assert isinstance(build_default_dispatcher(webhook_url=""), LoggingNotificationDispatcher)
    dispatcher = build_default_dispatcher(webhook_url="https://hooks.example.com/insign", webhook_secret="k")
    assert isinstance(dispatcher, CompositeNotificationDispatcher)
    assert any(isinstance(d, WebhookNotificationDispatcher) for d in dispatcher.dispatchers)
