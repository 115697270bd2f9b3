"""E-mail notifications for appointments and procedures.

Mail goes out through SendGrid's v3 HTTP API. Sending is best-effort: a
failure is logged and reported as ``False`` but never raised to the caller,
so a mail outage cannot roll back a booking or a status change.
"""

import logging
from typing import Any

import httpx

from app.config import settings
from app.core.logging_config import mask_email
from app.domain.procedure_state import ProcedureStatus, StepName, StepStatus
from app.domain.rendezvous_state import AdminVerdict, RendezvousStatus
from app.models.procedure import Procedure
from app.models.rendezvous import Rendezvous

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


def _format_date(rendezvous: Rendezvous) -> str:
    return rendezvous.date.strftime("%d/%m/%Y")


class NotificationService:
    """Service for sending transactional e-mails."""

    def __init__(self) -> None:
        """Initialize notification service."""
        self._http_client: httpx.AsyncClient | None = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Lazy-load HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: str | None = None,
    ) -> bool:
        """Send an email via SendGrid.

        Args:
            to_email: Recipient email
            subject: Email subject
            html_content: HTML body
            text_content: Plain text body

        Returns:
            bool: True if sent successfully
        """
        if not settings.sendgrid_api_key:
            logger.debug(f"SendGrid not configured, skipping mail to {mask_email(to_email)}")
            return False

        headers = {
            "Authorization": f"Bearer {settings.sendgrid_api_key}",
            "Content-Type": "application/json",
        }
        payload: dict[str, Any] = {
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {
                "email": settings.email_from_address,
                "name": settings.email_from_name,
            },
            "subject": subject,
            "content": [{"type": "text/html", "value": html_content}],
        }
        if text_content:
            payload["content"].insert(0, {"type": "text/plain", "value": text_content})

        try:
            response = await self.http_client.post(SENDGRID_URL, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Mail to {mask_email(to_email)} failed: {e}")
            return False

        if response.status_code not in (200, 202):
            logger.error(
                f"SendGrid rejected mail to {mask_email(to_email)}: "
                f"{response.status_code} {response.text[:200]}"
            )
            return False
        logger.info(f"Mail '{subject}' sent to {mask_email(to_email)}")
        return True

    # ==================== APPOINTMENTS ====================

    async def send_rendezvous_status_update(self, rendezvous: Rendezvous) -> bool:
        """Mail the client about the current status of their appointment."""
        status = RendezvousStatus(rendezvous.status)
        when = f"le {_format_date(rendezvous)} à {rendezvous.time_slot}"
        greeting = f"Bonjour {rendezvous.first_name},"

        if status == RendezvousStatus.PENDING:
            subject = "Votre demande de rendez-vous a bien été reçue"
            body = (
                f"Votre demande de rendez-vous {when} est enregistrée. "
                "Merci de la confirmer depuis votre espace personnel."
            )
        elif status == RendezvousStatus.CONFIRMED:
            subject = "Votre rendez-vous est confirmé"
            body = f"Votre rendez-vous {when} est confirmé. À bientôt !"
        elif status == RendezvousStatus.CANCELLED:
            subject = "Votre rendez-vous a été annulé"
            body = f"Votre rendez-vous {when} a été annulé."
            if rendezvous.cancellation_reason:
                body += f" Motif : {rendezvous.cancellation_reason}."
        else:
            subject = "Votre rendez-vous est terminé"
            body = f"Votre rendez-vous {when} est terminé."
            if rendezvous.admin_verdict == AdminVerdict.FAVORABLE.value:
                body += (
                    " Avis favorable : votre procédure d'admission va être ouverte "
                    "par notre équipe."
                )
            elif rendezvous.admin_verdict == AdminVerdict.UNFAVORABLE.value:
                body += " Nous ne pouvons malheureusement pas donner suite à votre projet pour le moment."

        return await self.send_email(
            rendezvous.email,
            subject,
            f"<p>{greeting}</p><p>{body}</p><p>L'équipe {settings.email_from_name}</p>",
            text_content=f"{greeting}\n\n{body}",
        )

    async def send_rendezvous_reminder(self, rendezvous: Rendezvous) -> bool:
        """Day-of reminder for a confirmed appointment."""
        body = (
            f"Nous vous rappelons votre rendez-vous aujourd'hui ({_format_date(rendezvous)}) "
            f"à {rendezvous.time_slot}."
        )
        return await self.send_email(
            rendezvous.email,
            "Rappel : votre rendez-vous aujourd'hui",
            f"<p>Bonjour {rendezvous.first_name},</p><p>{body}</p>",
            text_content=body,
        )

    # ==================== PROCEDURES ====================

    async def send_procedure_created(self, procedure: Procedure) -> bool:
        body = (
            f"Votre procédure d'admission pour {procedure.destination} est ouverte. "
            f"Première étape : {StepName.ADMISSION_REQUEST.label}."
        )
        return await self.send_email(
            procedure.email,
            "Votre procédure d'admission a démarré",
            f"<p>Bonjour {procedure.first_name},</p><p>{body}</p>",
            text_content=body,
        )

    async def send_procedure_update(
        self, procedure: Procedure, step: StepName | None = None
    ) -> bool:
        """Mail the client after a step change or an overall status change."""
        status = ProcedureStatus(procedure.status)
        parts = []
        if step is not None:
            current = procedure.step(step.value)
            if current is not None:
                parts.append(
                    f"L'étape « {step.label} » est désormais : {StepStatus(current.status).label}."
                )
                if current.rejection_reason:
                    parts.append(f"Motif : {current.rejection_reason}.")
        if status == ProcedureStatus.COMPLETED:
            parts.append("Félicitations, votre procédure est terminée !")
        elif status == ProcedureStatus.REJECTED:
            parts.append(f"Votre procédure a été refusée. Motif : {procedure.rejection_reason}.")
        elif status == ProcedureStatus.CANCELLED:
            parts.append("Votre procédure a été annulée.")

        body = " ".join(parts) or f"Statut de votre procédure : {status.label}."
        return await self.send_email(
            procedure.email,
            "Mise à jour de votre procédure",
            f"<p>Bonjour {procedure.first_name},</p><p>{body}</p>",
            text_content=body,
        )


notification_service = NotificationService()
