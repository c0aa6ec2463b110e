"""Tests for the backend and email HTTP clients."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from job_worker.clients import BackendClient, EmailSendError, ResendEmailSender, strip_html
from job_worker.clients.backend import MinStartDateError


def recording_transport(handler):
    requests = []

    def _handle(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    return httpx.MockTransport(_handle), requests


class TestBackendClient:
    async def test_conditional_location_update(self):
        transport, requests = recording_transport(lambda r: httpx.Response(200, json={"updated": True}))
        client = BackendClient(base_url="http://backend", service_token="svc-token", transport=transport)

        assert await client.update_location_if_placeholder("ride-1", "Bend, Oregon", "Lat ") is True
        await client.close()

        request = requests[0]
        assert request.url.path == "/api/internal/rides/ride-1/location"
        assert request.headers["Authorization"] == "Bearer svc-token"
        assert json.loads(request.content) == {"location": "Bend, Oregon", "onlyIfStartsWith": "Lat "}

    async def test_location_not_updated(self):
        transport, _ = recording_transport(lambda r: httpx.Response(200, json={"updated": False}))
        client = BackendClient(base_url="http://backend", transport=transport)
        assert await client.update_location_if_placeholder("ride-1", "Bend", "Lat ") is False
        await client.close()

    async def test_unsubscribed_lookup(self):
        def handler(request):
            if request.url.path.endswith("/missing/email-preferences"):
                return httpx.Response(404)
            return httpx.Response(200, json={"emailUnsubscribed": True})

        transport, _ = recording_transport(handler)
        client = BackendClient(base_url="http://backend", transport=transport)

        assert await client.is_email_unsubscribed("u1") is True
        assert await client.is_email_unsubscribed("missing") is False
        await client.close()

    async def test_backfill_chunk_duplicate(self):
        transport, requests = recording_transport(lambda r: httpx.Response(409))
        client = BackendClient(base_url="http://backend", transport=transport)
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        end = datetime(2024, 1, 31, tzinfo=timezone.utc)

        assert await client.request_backfill_chunk("u1", "garmin", start, end) is False
        assert json.loads(requests[0].content)["start"] == start.isoformat()
        await client.close()

    async def test_backfill_chunk_before_min_start(self):
        body = {"errorMessage": "start date is before min start time of 2024-06-10T08:30:00.250Z"}
        transport, _ = recording_transport(lambda r: httpx.Response(400, json=body))
        client = BackendClient(base_url="http://backend", transport=transport)
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        end = datetime(2024, 1, 31, tzinfo=timezone.utc)

        with pytest.raises(MinStartDateError) as exc_info:
            await client.request_backfill_chunk("u1", "garmin", start, end)
        # Rounded up to the next whole second
        assert exc_info.value.min_start == datetime(2024, 6, 10, 8, 30, 1, tzinfo=timezone.utc)
        await client.close()

    async def test_backfill_chunk_other_bad_request_raises(self):
        transport, _ = recording_transport(lambda r: httpx.Response(400, json={"errorMessage": "bad range"}))
        client = BackendClient(base_url="http://backend", transport=transport)
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)

        with pytest.raises(httpx.HTTPStatusError):
            await client.request_backfill_chunk("u1", "garmin", start, start)
        await client.close()

    async def test_backfill_status_carries_precondition(self):
        transport, requests = recording_transport(lambda r: httpx.Response(200, json={}))
        client = BackendClient(base_url="http://backend", transport=transport)

        await client.set_backfill_status("u1", "garmin", "2024", "in_progress", only_if_not="completed")
        await client.set_backfill_status("u1", "garmin", "2024", "failed")
        await client.close()

        assert requests[0].url.path == "/api/internal/backfill/status"
        assert json.loads(requests[0].content) == {
            "userId": "u1",
            "provider": "garmin",
            "year": "2024",
            "status": "in_progress",
            "onlyIfNot": "completed",
        }
        assert "onlyIfNot" not in json.loads(requests[1].content)

    async def test_server_errors_raise(self):
        transport, _ = recording_transport(lambda r: httpx.Response(500))
        client = BackendClient(base_url="http://backend", transport=transport)

        with pytest.raises(httpx.HTTPStatusError):
            await client.sync_latest("u1", "strava")
        await client.close()

    async def test_backfilled_up_to(self):
        transport, _ = recording_transport(
            lambda r: httpx.Response(200, json={"backfilledUpTo": "2025-03-01T00:00:00+00:00"})
        )
        client = BackendClient(base_url="http://backend", transport=transport)

        value = await client.get_backfilled_up_to("u1", "garmin", "ytd")
        assert value == datetime(2025, 3, 1, tzinfo=timezone.utc)
        await client.close()


class TestResendEmailSender:
    async def test_send(self):
        transport, requests = recording_transport(lambda r: httpx.Response(200, json={"id": "email-1"}))
        sender = ResendEmailSender(api_key="re_test", sender="Loam <noreply@example.com>", transport=transport)

        message_id = await sender.send("rider@example.com", "Hello", "<p>Hi <b>there</b></p>")
        await sender.close()

        assert message_id == "email-1"
        body = json.loads(requests[0].content)
        assert body["to"] == ["rider@example.com"]
        assert body["from"] == "Loam <noreply@example.com>"
        assert body["text"] == "Hi there"
        assert requests[0].headers["Authorization"] == "Bearer re_test"

    async def test_provider_error(self):
        transport, _ = recording_transport(lambda r: httpx.Response(422, text="invalid from"))
        sender = ResendEmailSender(api_key="re_test", transport=transport)

        with pytest.raises(EmailSendError, match="422"):
            await sender.send("rider@example.com", "Hello", "<p>Hi</p>")
        await sender.close()

    async def test_missing_api_key(self):
        sender = ResendEmailSender(api_key="", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with pytest.raises(EmailSendError, match="RESEND_API_KEY"):
            await sender.send("rider@example.com", "Hello", "<p>Hi</p>")
        await sender.close()


def test_strip_html_drops_style_blocks():
    html = "<html><style>p { color: red; }</style><p>Hello</p>\n<p>World</p></html>"
    assert strip_html(html) == "Hello World"
