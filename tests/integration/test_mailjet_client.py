import base64
from email.parser import BytesParser
from email.policy import HTTP

import httpx
import pytest

from mailrelay.models.domain.email_domain import EmailSendRequest
from mailrelay.services.mailjet_client import MailjetClient, MailjetError

SEND_URL = "https://api.mailjet.com/v3/send"
STATS_URL = "https://api.mailjet.com/v3/REST/messagesentstatistics"


def _message(**overrides) -> EmailSendRequest:
    fields = {
        "sender": "ops@x.com",
        "recipients": ["alice@x.com", "bob@x.com"],
        "subject": "Hello",
        "html": "<p>Hi</p>",
    }
    fields.update(overrides)
    return EmailSendRequest(**fields)


def _form_fields(request: httpx.Request) -> dict[str, list[str]]:
    """Decode the text parts of a multipart body into name -> values."""
    raw = b"Content-Type: " + request.headers["Content-Type"].encode() + b"\r\n\r\n" + request.read()
    message = BytesParser(policy=HTTP).parsebytes(raw)

    fields: dict[str, list[str]] = {}
    for part in message.iter_parts():
        if part.get_filename() is None:
            name = part.get_param("name", header="content-disposition")
            fields.setdefault(name, []).append(part.get_payload(decode=True).decode())
    return fields


@pytest.mark.asyncio
async def test_send_posts_repeated_to_fields_with_basic_auth(httpx_mock):
    client = MailjetClient("key", "secret")
    httpx_mock.add_response(method="POST", url=SEND_URL, json={"Sent": [{"Email": "alice@x.com"}]})

    result = await client.send_message(_message())
    await client.close()

    assert result == {"Sent": [{"Email": "alice@x.com"}]}

    request = httpx_mock.get_request()
    expected_auth = "Basic " + base64.b64encode(b"key:secret").decode()
    assert request.headers["Authorization"] == expected_auth

    form = _form_fields(request)
    assert form["from"] == ["ops@x.com"]
    assert form["subject"] == ["Hello"]
    assert form["html"] == ["<p>Hi</p>"]
    assert form["to"] == ["alice@x.com", "bob@x.com"]


@pytest.mark.asyncio
async def test_send_without_attachments_is_multipart(httpx_mock):
    client = MailjetClient("key", "secret")
    httpx_mock.add_response(method="POST", url=SEND_URL, json={"Sent": []})

    await client.send_message(_message(recipients=["b@x.com", "c@x.com"], attachments=[]))
    await client.close()

    request = httpx_mock.get_request()
    assert request.headers["Content-Type"].startswith("multipart/form-data")
    body = request.read()
    assert body.count(b'name="to"') == 2
    assert b'name="attachment"' not in body


@pytest.mark.asyncio
async def test_send_attaches_files_under_original_names(httpx_mock, make_attachments):
    client = MailjetClient("key", "secret")
    httpx_mock.add_response(method="POST", url=SEND_URL, json={"Sent": []})
    attachments = make_attachments("report.pdf", "chart.png")

    await client.send_message(_message(attachments=attachments))
    await client.close()

    request = httpx_mock.get_request()
    assert request.headers["Content-Type"].startswith("multipart/form-data")
    body = request.read()
    assert body.count(b'name="to"') == 2
    assert body.count(b'name="attachment"') == 2
    assert b'filename="report.pdf"' in body
    assert b'filename="chart.png"' in body
    assert b"contents of report.pdf" in body


@pytest.mark.asyncio
async def test_send_non_200_raises_with_response(httpx_mock):
    client = MailjetClient("key", "secret")
    httpx_mock.add_response(
        method="POST",
        url=SEND_URL,
        status_code=401,
        json={"ErrorMessage": "API key authentication/authorization failure"},
    )

    with pytest.raises(MailjetError) as exc:
        await client.send_message(_message())
    await client.close()

    assert exc.value.status_code == 401
    assert exc.value.response_data == {"ErrorMessage": "API key authentication/authorization failure"}


@pytest.mark.asyncio
async def test_send_other_2xx_is_not_success(httpx_mock):
    client = MailjetClient("key", "secret")
    httpx_mock.add_response(method="POST", url=SEND_URL, status_code=202, json={})

    with pytest.raises(MailjetError) as exc:
        await client.send_message(_message())
    await client.close()

    assert exc.value.status_code == 202


@pytest.mark.asyncio
async def test_send_transport_error(httpx_mock):
    client = MailjetClient("key", "secret")
    httpx_mock.add_exception(httpx.ConnectError("connection refused"), method="POST", url=SEND_URL)

    with pytest.raises(MailjetError) as exc:
        await client.send_message(_message())
    await client.close()

    assert exc.value.status_code is None
    assert "connection refused" in str(exc.value)


@pytest.mark.asyncio
async def test_statistics_without_query_has_no_query_string(httpx_mock):
    client = MailjetClient("key", "secret")
    httpx_mock.add_response(method="GET", url=STATS_URL, json={"Count": 0, "Data": []})

    result = await client.get_message_statistics({})
    await client.close()

    assert result == {"Count": 0, "Data": []}
    request = httpx_mock.get_request()
    assert str(request.url) == STATS_URL


@pytest.mark.asyncio
async def test_statistics_encodes_query(httpx_mock):
    client = MailjetClient("key", "secret")
    httpx_mock.add_response(
        method="GET",
        url=f"{STATS_URL}?CustomCampaign=spring+sale&Limit=10",
        json={"Count": 1, "Data": [{}]},
    )

    await client.get_message_statistics({"CustomCampaign": "spring sale", "Limit": "10"})
    await client.close()

    request = httpx_mock.get_request()
    assert request.url.params["CustomCampaign"] == "spring sale"
    assert request.url.params["Limit"] == "10"


@pytest.mark.asyncio
async def test_statistics_failure(httpx_mock):
    client = MailjetClient("key", "secret")
    httpx_mock.add_response(method="GET", url=STATS_URL, status_code=500, text="oops")

    with pytest.raises(MailjetError) as exc:
        await client.get_message_statistics({})
    await client.close()

    assert exc.value.status_code == 500
    assert exc.value.response_data == "oops"
