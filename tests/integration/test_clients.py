"""Integration tests for the collaborator HTTP clients against the mock collaborator server"""

import httpx
import pytest
from collections import deque

from emi_engine.domain.exceptions import EligibilityServiceError, NotificationDeliveryError
from emi_engine.infrastructure.clients.eligibility import EligibilityClient
from emi_engine.infrastructure.clients.notifications import NotificationClient
from mock_services.collaborators import main as collaborators
from mock_services.collaborators.main import SENT_NOTIFICATIONS, SENT_NOTIFICATIONS_LIMIT, app as collaborators_app

BASE_URL = "http://collaborators"


@pytest.fixture
def transport() -> httpx.ASGITransport:
    SENT_NOTIFICATIONS.clear()
    return httpx.ASGITransport(app=collaborators_app)


def timeout_transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    return httpx.MockTransport(handler)


async def test_eligibility_approved(transport):
    client = EligibilityClient(base_url=BASE_URL, transport=transport)

    decision = await client.is_eligible("user_good", 6000)

    assert decision.approved is True
    assert decision.credit_limit == 100000


async def test_eligibility_blocked_user(transport):
    client = EligibilityClient(base_url=BASE_URL, transport=transport)

    decision = await client.is_eligible("user_blocked", 6000)

    assert decision.approved is False
    assert decision.credit_limit == 0


async def test_eligibility_unknown_user(transport):
    client = EligibilityClient(base_url=BASE_URL, transport=transport)

    with pytest.raises(EligibilityServiceError, match="404"):
        await client.is_eligible("user_nobody", 6000)


async def test_eligibility_timeout():
    client = EligibilityClient(base_url=BASE_URL, timeout=0.5, transport=timeout_transport())

    with pytest.raises(EligibilityServiceError, match="timeout"):
        await client.is_eligible("user_good", 6000)


async def test_eligibility_invalid_response():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"approved": True})

    client = EligibilityClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))

    with pytest.raises(EligibilityServiceError, match="Invalid eligibility response"):
        await client.is_eligible("user_good", 6000)


async def test_notification_delivered(transport):
    client = NotificationClient(base_url=BASE_URL, channel="sms", transport=transport)

    result = await client.send(
        "user_good",
        "reminder_3_days",
        {"currency": "₹", "amount": "1,036", "dueDate": "5 Feb"},
    )

    assert result.delivered is True
    assert result.reference
    sent = SENT_NOTIFICATIONS[-1]
    assert sent["channel"] == "sms"
    assert sent["template_type"] == "reminder_3_days"
    assert sent["title"] == "EMI Due in 3 Days"
    assert sent["body"] == "Keep ₹1,036 ready in your bank for auto-debit on 5 Feb"


async def test_notification_sink_unavailable(transport):
    client = NotificationClient(base_url=BASE_URL, transport=transport)

    with pytest.raises(NotificationDeliveryError, match="503"):
        await client.send("unreachable_user", "due_today", {"currency": "₹", "amount": "1,000"})
    assert len(SENT_NOTIFICATIONS) == 0


async def test_notification_timeout():
    client = NotificationClient(base_url=BASE_URL, timeout=0.5, transport=timeout_transport())

    with pytest.raises(NotificationDeliveryError, match="timeout"):
        await client.send("user_good", "due_today", {"currency": "₹", "amount": "1,000"})


async def test_sent_notification_log_is_bounded(transport, monkeypatch):
    monkeypatch.setattr(collaborators, "SENT_NOTIFICATIONS", deque(maxlen=2))

    client = NotificationClient(base_url=BASE_URL, transport=transport)
    for user in ("user_a", "user_b", "user_c"):
        await client.send(user, "due_today", {"currency": "₹", "amount": "1,000"})

    assert [n["user_id"] for n in collaborators.SENT_NOTIFICATIONS] == ["user_b", "user_c"]
    assert SENT_NOTIFICATIONS.maxlen == SENT_NOTIFICATIONS_LIMIT
