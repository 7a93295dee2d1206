"""Welcome email sent after a successful course purchase.

The email carries an access link to the checkout success page, which
exchanges the Stripe session id for course access.
"""

from datetime import UTC, datetime
from pathlib import Path
from urllib.parse import urlencode

from jinja2 import Environment, FileSystemLoader, select_autoescape

from checkout_service.integrations.email import EmailMessage

TEMPLATE_DIR = Path(__file__).parent / "templates"

WELCOME_SUBJECT = "🎉 Willkommen zum AI-Kurs - Dein Zugang ist aktiv!"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
)


def build_access_link(site_url: str, session_id: str) -> str:
    return f"{site_url.rstrip('/')}/checkout/success?{urlencode({'session_id': session_id})}"


def render_welcome_email(to: str, access_link: str, support_email: str = "") -> EmailMessage:
    context = {
        "access_link": access_link,
        "support_email": support_email,
        "year": datetime.now(UTC).year,
    }
    return EmailMessage(
        to=to,
        subject=WELCOME_SUBJECT,
        text=_env.get_template("welcome.txt").render(**context),
        html=_env.get_template("welcome.html").render(**context),
    )
