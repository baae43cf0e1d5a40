import asyncio
from typing import Any, Dict, Optional

from jinja2 import DictLoader, Environment, select_autoescape
from sendgrid import SendGridAPIClient  # type: ignore
from sendgrid.helpers.mail import Content, Email, Mail, To  # type: ignore

from ..utils.logging import setup_order_logging

logger = setup_order_logging("order_service.email_provider")

ORDER_CREATED_TEMPLATE = "order_created.html"

ORDER_TEMPLATES = {
    ORDER_CREATED_TEMPLATE: (
        "<p>Hello {{ email }},</p>"
        "<p>Your order <strong>{{ order_id }}</strong> was received.</p>"
        "<ul>{% for code in product_codes %}<li>{{ code }}</li>{% endfor %}</ul>"
        "<p>Total: {{ total_price }} ({{ payment }})</p>"
        "<p>Shipping: {{ shipping_type }} via {{ carrier }}</p>"
    ),
}


class EmailProvider:
    """SendGrid delivery with jinja2 templates for order notifications"""

    def __init__(self, sendgrid_api_key: str, from_email: str, from_name: str = ""):
        if not from_email:
            raise ValueError("FROM_EMAIL setting is required")
        if not sendgrid_api_key:
            raise ValueError("SENDGRID_API_KEY setting is required")

        self.sendgrid_api_key = sendgrid_api_key
        self.from_email = from_email
        self.from_name = from_name
        self.template_env = Environment(
            loader=DictLoader(ORDER_TEMPLATES), autoescape=select_autoescape()
        )

    def render(self, template_name: str, template_data: Dict[str, Any]) -> str:
        return self.template_env.get_template(template_name).render(**template_data)

    async def send_email(
        self,
        to_email: str,
        subject: str,
        content: str,
        is_html: bool = True,
        correlation_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send an email using SendGrid

        Returns a result dict; failures are logged and reported with
        ``success=False`` rather than raised.
        """
        try:
            mail = Mail(Email(self.from_email, self.from_name), To(to_email), subject)
            mail.add_content(Content("text/html" if is_html else "text/plain", content))

            sg = SendGridAPIClient(api_key=self.sendgrid_api_key)
            # The SendGrid client is blocking
            response = await asyncio.to_thread(sg.send, mail)

            logger.info(
                "Email sent",
                extra={
                    "correlation_id": correlation_id,
                    "recipient": to_email,
                    "provider": "sendgrid",
                    "status_code": response.status_code,
                },
            )
            return {
                "success": True,
                "message_id": response.headers.get("X-Message-Id"),
                "provider": "sendgrid",
                "recipient": to_email,
                "status_code": response.status_code,
            }
        except Exception as e:
            logger.error(
                "Failed to send email",
                extra={
                    "correlation_id": correlation_id,
                    "recipient": to_email,
                    "provider": "sendgrid",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
            )
            return {
                "success": False,
                "error": str(e),
                "provider": "sendgrid",
                "recipient": to_email,
            }
