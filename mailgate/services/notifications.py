"""Outbound e-mail: approval requests and decision notices.

Handles:
- Approval request e-mails carrying the token marker in the subject
- Decision notices to the document author
"""

import asyncio
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import aiosmtplib
from jinja2 import Template

from mailgate.core.approval.parser import subject_marker
from mailgate.core.config import Settings, get_settings
from mailgate.db.records import DocumentRecord, TokenRecord

logger = logging.getLogger(__name__)


EMAIL_TEMPLATES = {
    "approval_request": {
        "subject": "{{ marker }} Approval request: {{ title }}",
        "body": """
Hello,

{{ requested_by }} asks for your approval of the document below.

Document: {{ title }}
Requested at: {{ issued_at }}
{% if expires_at %}Please respond before: {{ expires_at }}
{% endif %}
To decide, reply to this e-mail and write APPROVED or REJECTED
at the top of your reply. Keep the subject line unchanged.

Approval-Token: {{ token_id }}

---
{{ app_name }}
        """,
    },
    "decision_notice": {
        "subject": "[{{ app_name }}] Document {{ new_status }}: {{ title }}",
        "body": """
Your document has been {{ new_status }}.

Document: {{ title }}
Decided by: {{ actor }}

---
{{ app_name }}
        """,
    },
}


def render(template_name: str, **context) -> tuple[str, str]:
    template = EMAIL_TEMPLATES[template_name]
    subject = Template(template["subject"]).render(**context).strip()
    body = Template(template["body"]).render(**context).strip() + "\n"
    return subject, body


class NotificationService:
    """Sends workflow e-mails over SMTP."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    @property
    def configured(self) -> bool:
        return bool(self.settings.smtp_host and self.settings.smtp_from_email)

    async def send_approval_request(
        self,
        document: DocumentRecord,
        token: TokenRecord,
        *,
        requested_by: str = "A colleague",
    ) -> bool:
        """E-mail the approver; the subject carries the token marker."""
        subject, body = render(
            "approval_request",
            marker=subject_marker(token.id),
            title=document.title,
            requested_by=requested_by,
            issued_at=token.issued_at.strftime("%Y-%m-%d %H:%M UTC"),
            expires_at=token.expires_at.strftime("%Y-%m-%d %H:%M UTC") if token.expires_at else None,
            token_id=token.id,
            app_name=self.settings.app_name,
        )
        return await self._deliver_email(token.approver_email, subject, body)

    async def send_decision_notice(
        self,
        document: DocumentRecord,
        *,
        new_status: str,
        actor: str,
    ) -> bool:
        """Tell the author what happened to their document."""
        if not document.author_email:
            return False
        subject, body = render(
            "decision_notice",
            title=document.title,
            new_status=new_status.replace("_", " "),
            actor=actor,
            app_name=self.settings.app_name,
        )
        return await self._deliver_email(document.author_email, subject, body)

    async def _deliver_email(self, to_email: str, subject: str, body: str) -> bool:
        """Actually deliver the email via SMTP."""
        if not self.configured:
            logger.warning("SMTP not configured, skipping email to %s", to_email)
            return False

        msg = MIMEMultipart()
        msg["From"] = f"{self.settings.smtp_from_name} <{self.settings.smtp_from_email}>"
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        await aiosmtplib.send(
            msg,
            hostname=self.settings.smtp_host,
            port=self.settings.smtp_port,
            username=self.settings.smtp_username,
            password=self.settings.smtp_secret,
            start_tls=self.settings.smtp_use_tls,
        )
        logger.info("Sent '%s' to %s", subject, to_email)
        return True


def run_sync(coro):
    """Run a notification coroutine from synchronous code (worker threads, Celery)."""
    return asyncio.run(coro)
