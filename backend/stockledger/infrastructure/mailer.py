"""
Servicio de email para alertas de stock bajo
"""
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from html import escape
from typing import List, Optional
import logging

from ..config import settings
from .slack import LowStockAlert, DIGEST_LIMIT

logger = logging.getLogger(__name__)


class EmailService:

    def __init__(self):
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_username = settings.smtp_username
        self.smtp_password = settings.smtp_password
        self.from_email = settings.smtp_from
        self.use_tls = settings.smtp_use_tls

    @property
    def configured(self) -> bool:
        return bool(self.smtp_host)

    def send_email(self, to_emails: List[str], subject: str, html_content: str, text_content: str) -> bool:
        """Envía un email; devuelve False (y registra el error) si falla"""
        if not self.configured:
            logger.warning("SMTP no configurado; no se envía email a %s", to_emails)
            return False
        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = self.from_email
            msg['To'] = ', '.join(to_emails)
            msg.attach(MIMEText(text_content, 'plain'))
            msg.attach(MIMEText(html_content, 'html'))

            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                if self.use_tls:
                    server.starttls()
                if self.smtp_username:
                    server.login(self.smtp_username, self.smtp_password or "")
                server.send_message(msg)

            logger.info("Email enviado a %s", to_emails)
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error("No se pudo enviar email a %s: %s", to_emails, e)
            return False

    def send_low_stock_alerts(
        self,
        to_emails: List[str],
        alerts: List[LowStockAlert],
        base_url: str,
        company_name: Optional[str] = None,
    ) -> bool:
        critical = [a for a in alerts if a.status == "critical"]
        warning = [a for a in alerts if a.status == "warning"]
        subject = f"Low Stock Alert: {len(critical)} critical, {len(warning)} warning"
        if company_name:
            subject += f" - {company_name}"

        text_lines, html_parts = [], []
        for title, group in (("Critical", critical), ("Warning", warning)):
            if not group:
                continue
            text_lines.append(f"{title}:")
            items = []
            for a in group[:DIGEST_LIMIT]:
                text_lines.append(f"  - {a.component_name} ({a.sku_code}): {a.quantity_on_hand} on hand, reorder point {a.reorder_point}")
                url = f"{base_url}/components/{a.component_id}"
                items.append(
                    f'<li><a href="{escape(url)}">{escape(a.component_name)}</a> ({escape(a.sku_code)}): '
                    f'{a.quantity_on_hand} on hand, reorder point {a.reorder_point}</li>'
                )
            if len(group) > DIGEST_LIMIT:
                text_lines.append(f"  ...and {len(group) - DIGEST_LIMIT} more")
                items.append(f"<li>...and {len(group) - DIGEST_LIMIT} more</li>")
            html_parts.append(f"<h3>{title}</h3><ul>{''.join(items)}</ul>")

        return self.send_email(to_emails, subject, "".join(html_parts), "\n".join(text_lines))
