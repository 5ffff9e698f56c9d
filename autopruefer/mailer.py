import logging
import os
import smtplib
from email.message import EmailMessage
from typing import Optional

from .models import AnalysisResult, VehicleData
from .pdf_report import VERDICT_LABELS

logger = logging.getLogger(__name__)


class ReportMailer:
    """Versendet das fertige Gutachten per SMTP (STARTTLS)"""

    def __init__(self, host: str = '', port: int = 587, user: str = '', password: str = '',
                 sender: str = 'Autoprüfer <noreply@autopruefer.de>', timeout: float = 30):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> 'ReportMailer':
        return cls(
            host=config.smtp_host,
            port=config.smtp_port,
            user=config.smtp_user,
            password=config.smtp_password,
            sender=config.mail_from,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def build_message(self, recipient: str, vehicle: VehicleData, result: AnalysisResult,
                      result_url: Optional[str] = None) -> EmailMessage:
        message = EmailMessage()
        message['Subject'] = f'Ihre Autoprüfer-Analyse: {vehicle.title}'
        message['From'] = self.sender
        message['To'] = recipient

        lines = [
            'Guten Tag,',
            '',
            f'Ihre Fahrzeuganalyse für {vehicle.title} ist fertig.',
            '',
            f'Gesamtbewertung: {VERDICT_LABELS.get(result.verdict, result.verdict)}',
            result.summary,
        ]
        if result.risks:
            lines += ['', 'Hauptrisiken:'] + [f'- {risk}' for risk in result.risks]
        if result_url:
            lines += ['', f'Vollständiges Ergebnis: {result_url}']
        lines += ['', 'Vielen Dank für Ihr Vertrauen in Autoprüfer!']
        message.set_content('\n'.join(lines))

        if result.pdf_path and os.path.exists(result.pdf_path):
            with open(result.pdf_path, 'rb') as handle:
                message.add_attachment(handle.read(), maintype='application', subtype='pdf',
                                       filename=os.path.basename(result.pdf_path))
        return message

    def send_report(self, recipient: str, vehicle: VehicleData, result: AnalysisResult,
                    result_url: Optional[str] = None) -> bool:
        """Fehler werden geloggt, nicht weitergereicht"""
        if not self.enabled or not recipient:
            return False
        try:
            message = self.build_message(recipient, vehicle, result, result_url)
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.starttls()
                if self.user:
                    smtp.login(self.user, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("E-Mail an %s fehlgeschlagen: %s", recipient, e)
            return False
        logger.info("Gutachten an %s versendet", recipient)
        return True
