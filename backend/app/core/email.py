import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import List, Optional, Any, Dict
import logging
from jinja2 import Template

from app.config import get_settings

logger = logging.getLogger(__name__)


class EmailService:
    def __init__(self):
        self.settings = get_settings()

    def render(self, template_str: str, template_data: Dict[str, Any]) -> str:
        return Template(template_str).render(**template_data)

    def send_email(
        self,
        email_to: str,
        subject: str,
        template_str: str,
        template_data: Dict[str, Any],
        cc: Optional[List[str]] = None,
    ) -> bool:
        """
        Versendet eine E-Mail via SMTP.
        Gibt False zurück, wenn der Versand fehlschlägt.
        """
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.settings.emails_from_name} <{self.settings.emails_from_email}>"
        msg["To"] = email_to
        if cc:
            msg["Cc"] = ", ".join(cc)

        html_content = self.render(template_str, template_data)
        text_content = html_content.replace("<br>", "\n").replace("</p>", "\n\n")
        msg.attach(MIMEText(text_content, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        try:
            with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port) as server:
                if self.settings.debug:
                    server.set_debuglevel(1)
                if self.settings.smtp_port == 587:
                    server.starttls()
                if self.settings.smtp_user and self.settings.smtp_password:
                    server.login(self.settings.smtp_user, self.settings.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"E-Mail an {email_to} fehlgeschlagen: {e}")
            return False

        logger.info(f"E-Mail an {email_to} versendet: {subject}")
        return True


# Singleton
email_service = EmailService()


PLAN_REVIEW_TEMPLATE = """
<!DOCTYPE html>
<html>
<head></head>
<body>
    <p>Hallo Produktion,</p>

    <p>die Bestellung <strong>{{ order_number }}</strong> ({{ customer_name }}) wurde geändert,
    für folgende Produktionspläne existieren aber bereits Trays:</p>

    <ul>
    {% for plan in plans %}
        <li>{{ plan.variety }} - Ernte {{ plan.harvest_date }} ({{ plan.trays_needed }} Trays)</li>
    {% endfor %}
    </ul>

    <p>Grund: {{ reason }}</p>
    <p>Bitte die Pläne manuell prüfen und anpassen.</p>
</body>
</html>
"""

ORDER_INFEASIBLE_TEMPLATE = """
<!DOCTYPE html>
<html>
<head></head>
<body>
    <p>Hallo Produktion,</p>

    <p>für die Bestellung <strong>{{ order_number }}</strong> ({{ customer_name }}, Lieferung {{ delivery_date }})
    können nicht alle Sorten rechtzeitig produziert werden:</p>

    <ul>
    {% for issue in issues %}
        <li>{{ issue.variety }}: {{ issue.message }}{% if issue.days_overdue %} ({{ issue.days_overdue }} Tage zu spät){% endif %}</li>
    {% endfor %}
    </ul>
</body>
</html>
"""

ORDER_MILESTONE_TEMPLATE = """
<!DOCTYPE html>
<html>
<head></head>
<body>
    <p>Bestellung <strong>{{ order_number }}</strong> ({{ customer_name }}): {{ milestone }}</p>
    <p>Lieferdatum: {{ delivery_date }}</p>
</body>
</html>
"""

OVERDUE_PLANS_TEMPLATE = """
<!DOCTYPE html>
<html>
<head></head>
<body>
    <p>Folgende Produktionspläne sind noch nicht freigegeben:</p>
    <ul>
    {% for plan in plans %}
        <li>{{ plan.variety }}: {{ plan.trays_needed }} Trays, Aussaat bis {{ plan.plant_by_date }}{% if plan.overdue %} <strong>(überfällig)</strong>{% endif %}</li>
    {% endfor %}
    </ul>
</body>
</html>
"""
