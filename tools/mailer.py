import os
from datetime import datetime, timezone, date
from typing import Dict, Any, Optional, Callable
import httpx
from loguru import logger

from tools.composer import compose_email, normalize_email_type, plain_text
from tools.errors import CRMAssistantError, UpstreamError, ValidationError
from tools.leads import LeadManager

# CRM date field stamped after a successful send, by email type
STAMP_FIELDS = {
    "questionnaire": "Questionnaire_Date_Sent",
    "quotation": "Informal_Quote_Sent",
}


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class EmailSender:
    """Sends composed HTML emails through a webhook transport (Zapier)."""

    def __init__(
        self,
        leads: LeadManager,
        webhook_url: Optional[str] = None,
        http: Optional[httpx.Client] = None,
        today: Callable[[], date] = _utc_today,
    ):
        self.leads = leads
        self.webhook_url = webhook_url if webhook_url is not None else os.getenv("ZAPIER_EMAIL_WEBHOOK_URL")
        self.http = http or httpx.Client(timeout=30)
        self.today = today

        if not self.webhook_url:
            logger.warning("No email webhook configured, using mock mode")

    def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        email_type: str = "general",
        lead_id: Optional[str] = None,
        company_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Compose and send an email, then stamp the matching CRM date field.

        Args:
            to: Recipient address
            subject: Subject drafted by the caller (replaced by the type template)
            body: Plain-text body
            email_type: questionnaire, quotation, follow-up, general or template
            lead_id: Lead whose date field should be stamped
            company_name: Recipient company for the subject line

        Returns:
            Send result dict

        Raises:
            ValidationError: if recipient, subject or body is missing
            UpstreamError: if the transport rejects the message
        """
        if not to or not subject or not body:
            raise ValidationError("Email recipient, subject, and body are required")

        kind = email_type or "general"
        composed = compose_email(kind, {"content": body, "company_name": company_name})
        logger.info(f"Sending {kind} email to {to}")

        if self.webhook_url:
            self._post_webhook(to, composed, plain_text(body), kind, lead_id)
            logger.info(f"HTML email sent successfully to {to} via webhook")
        else:
            logger.info(
                f"Mock mode: would send {kind} email to {to} "
                f"with subject {composed['subject']!r} ({len(composed['html_body'])} bytes of HTML)"
            )

        result = {
            "success": True,
            "message": f"HTML email sent successfully to {to}",
            "emailType": kind,
            "subject": composed["subject"],
            "dateSent": datetime.now(timezone.utc).isoformat(),
            "format": "html",
        }

        field = STAMP_FIELDS.get(normalize_email_type(kind))
        if lead_id and field:
            result["fieldUpdate"] = self._stamp_lead(lead_id, field)
        return result

    def _post_webhook(self, to: str, composed: Dict[str, str], text_body: str, email_type: str, lead_id: Optional[str]) -> None:
        html_body = composed["html_body"]
        payload = {
            "to": to,
            "subject": composed["subject"],
            # Zapier actions look for the HTML under different names
            "message": html_body,
            "body_html": html_body,
            "html_body": html_body,
            "content": html_body,
            "text_body": text_body,
            "body_text": text_body,
            "leadId": lead_id,
            "emailType": email_type,
            "format": "html",
            "content_type": "text/html",
            "is_html": True,
        }
        try:
            response = self.http.post(
                self.webhook_url,
                json=payload,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Email webhook unreachable: {e}") from e

        if not response.is_success:
            logger.error(f"Email webhook failed: {response.status_code} - {response.text}")
            raise UpstreamError(
                f"Email webhook failed: {response.status_code} - {response.text}",
                status=response.status_code,
                body=response.text,
            )

    def _stamp_lead(self, lead_id: str, field: str) -> Dict[str, Any]:
        value = self.today().isoformat()
        try:
            self.leads.apply_field_update(lead_id, field, value)
            logger.info(f"Updated lead {lead_id} field {field} to {value}")
            return {"success": True, "field": field, "value": value}
        except CRMAssistantError as e:
            # The email is already out; report the stamp failure without failing the send
            logger.error(f"Failed to update lead {lead_id} field {field}: {e}")
            return {"success": False, "field": field, "error": str(e)}
