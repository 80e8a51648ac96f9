"""
Email API Routes
HTTP endpoints for sending mail, delivery history and indexed-message search.
Domain errors propagate to the handlers registered in main.py.
"""

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile

from mailrelay.config import Settings, get_settings
from mailrelay.models.api.email_request import SearchEmailsRequest
from mailrelay.models.domain.email_domain import RawSendInput
from mailrelay.services.email_service import EmailService
from mailrelay.services.uploads import stage_uploads

router = APIRouter(tags=["email"])


def get_email_service(request: Request) -> EmailService:
    """Resolve the service built during application startup."""
    return request.app.state.email_service


@router.post("/email")
async def send_email(
    sender: str | None = Form(default=None, alias="from"),
    to: str | None = Form(default=None),
    subject: str | None = Form(default=None),
    html: str | None = Form(default=None),
    to_index: bool = Form(default=False, alias="toIndex"),
    attachment: list[UploadFile] | None = File(default=None),
    service: EmailService = Depends(get_email_service),
    settings: Settings = Depends(get_settings),
):
    """Send an email to the authorized subset of the requested recipients."""
    attachments = await stage_uploads(attachment or [], settings.upload_path())

    raw = RawSendInput(sender=sender, to=to, subject=subject, html=html, to_index=to_index)
    return await service.send(raw, attachments)


@router.get("/history")
async def get_history(request: Request, service: EmailService = Depends(get_email_service)):
    """List sent-message statistics; query parameters are forwarded to Mailjet."""
    query = {}
    for key in request.query_params.keys():
        values = request.query_params.getlist(key)
        query[key] = values[0] if len(values) == 1 else values

    return await service.history(query)


@router.get("/search")
async def search_emails(
    params: SearchEmailsRequest = Depends(),
    service: EmailService = Depends(get_email_service),
):
    """Search indexed messages."""
    return await service.search(params.text)
