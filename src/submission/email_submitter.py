"""Email channel

No district confirms an emailed request synchronously, so the ticket number is
always synthetic here. The real number arrives in the district's reply and is
applied with SubmissionService.reconcile_ticket.
"""

import asyncio
import html
from typing import Dict, Any, Optional
from datetime import datetime
from loguru import logger

from src.districts.models import District
from .base import BaseSubmitter
from .channels import Channel
from .errors import ChannelUnavailableError, SubmissionTransportError
from .extractor import synthetic_id
from .models import SubmissionResult


def _yes_no(value: Any) -> str:
    return 'Yes' if value else 'No'


def build_sections(request_data: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Ordered summary sections shared by the text and HTML renderings"""
    return {
        'CONTACT INFORMATION': {
            'Name': request_data.get('contact_name'),
            'Company': request_data.get('company_name') or 'N/A',
            'Phone': request_data.get('phone'),
            'Email': request_data.get('email') or 'N/A',
        },
        'WORK LOCATION': {
            'Address': request_data.get('address'),
            'County': request_data.get('county') or 'N/A',
            'Nearest Cross Street': request_data.get('nearest_cross_street') or 'N/A',
        },
        'WORK DETAILS': {
            'Type of Work': request_data.get('work_type'),
            'Description': request_data.get('work_description'),
            'Start Date': request_data.get('start_date'),
            'Duration': f"{request_data.get('duration')} day(s)",
            'Depth': request_data.get('depth'),
            'Work Area': (
                f"{request_data.get('work_area_length') or '?'} x {request_data.get('work_area_width') or '?'}"
            ),
        },
        'ADDITIONAL INFORMATION': {
            'Area Pre-Marked': _yes_no(request_data.get('marked_area')),
            'Marking Instructions': request_data.get('marking_instructions') or 'N/A',
            'Explosives Used': _yes_no(request_data.get('explosives_used')),
            'Emergency Work': _yes_no(request_data.get('emergency_work')),
            'Permit Number': request_data.get('permit_number') or 'N/A',
            'Request ID': request_data.get('request_id'),
        },
    }


def render_text(request_data: Dict[str, Any], district: District) -> str:
    """Plain-text request summary"""
    lines = [
        f"811 Locate Request for {district.name}",
        "",
        "Please process the following locate request and reply with the ticket number.",
    ]
    for title, fields in build_sections(request_data).items():
        lines.extend(["", title, "-" * len(title)])
        lines.extend(f"{label}: {value}" for label, value in fields.items())
    lines.extend(["", "Thank you."])
    return "\n".join(lines)


def render_html(request_data: Dict[str, Any], district: District) -> str:
    """HTML request summary"""
    parts = [
        "<html><body style=\"font-family: Arial, sans-serif;\">",
        f"<h2>811 Locate Request for {html.escape(district.name)}</h2>",
        "<p>Please process the following locate request and reply with the ticket number.</p>",
    ]
    for title, fields in build_sections(request_data).items():
        parts.append(f"<h3>{html.escape(title.title())}</h3>")
        parts.append("<table cellpadding=\"4\">")
        for label, value in fields.items():
            parts.append(
                f"<tr><td><strong>{html.escape(label)}</strong></td>"
                f"<td>{html.escape(str(value))}</td></tr>"
            )
        parts.append("</table>")
    parts.append("<p>Thank you.</p></body></html>")
    return "\n".join(parts)


def resolve_recipient(district: District) -> Optional[str]:
    """District email, else support@ the portal's domain"""
    if district.email:
        return district.email
    if district.portal_host:
        return f"support@{district.portal_host}"
    return None


class EmailSubmitter(BaseSubmitter):
    """Submit requests by emailing the district"""

    channel = Channel.EMAIL

    def __init__(self, sender):
        """
        Initialize email submitter

        Args:
            sender: Outbound mail channel with send_email(to_email, subject,
                text_body, html_body, headers) -> message id (e.g. GmailSender)
        """
        self.sender = sender
        super().__init__()

    async def submit(self, request_data: Dict[str, Any], district: District) -> SubmissionResult:
        request_id = request_data.get('request_id', 'N/A')

        recipient = resolve_recipient(district)
        if not recipient:
            raise ChannelUnavailableError(f"No email address known for district {district.id}")

        subject = f"811 Locate Request - {request_data.get('address')}"
        logger.info(f"[{request_id}] Emailing request to {district.id} at {recipient}")

        try:
            message_id = await asyncio.to_thread(
                self.sender.send_email,
                recipient,
                subject,
                render_text(request_data, district),
                render_html(request_data, district),
                {'X-Request-ID': request_id},
            )
        except Exception as e:
            raise SubmissionTransportError(f"Email send failed: {e}") from e

        ticket_number = synthetic_id('EMAIL')
        logger.success(f"[{request_id}] Email sent to {recipient}, awaiting district reply ({ticket_number})")
        return SubmissionResult(
            success=True,
            ticket_number=ticket_number,
            confirmation_number=message_id,
            data={
                'recipient': recipient,
                'subject': subject,
                'message_id': message_id,
                'sent_at': datetime.now().isoformat(),
            },
        )
