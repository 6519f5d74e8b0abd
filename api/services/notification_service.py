"""
Notification service: template rendering + dispatch via email.

Unlike fire-and-forget notices, bid invites need the dispatch outcome
(an invite only advances to "sent" on confirmed delivery), so
send_notification() is awaited inline and returns the gateway's flag.
"""

from typing import Optional

import structlog

from api.config import settings
from api.services import email_service

logger = structlog.get_logger()

# ---------- Template registry ----------

TEMPLATES = {
    "bid_invite": {
        "subject": "[{app_name}] Invitation to bid: {package_title}",
        "body": (
            "Hello {recipient_name},\n\n"
            "You are invited to submit a bid for {package_title}{trade_suffix}.\n\n"
            "Bids are due: {due_display}\n\n"
            "Review the bid documents and submit your pricing here: {portal_url}\n\n"
            "This link is unique to your company. Please do not forward it."
        ),
    },
    "bid_addendum_issued": {
        "subject": "[{app_name}] Addendum #{number} issued for {package_title}",
        "body": (
            "Addendum #{number} has been issued for {package_title}.\n\n"
            "{addendum_title}\n\n"
            "{addendum_message}\n\n"
            "Please review and acknowledge it in the bid portal before submitting or revising your bid."
        ),
    },
    "bid_awarded": {
        "subject": "[{app_name}] Your bid for {package_title} was selected",
        "body": (
            "Congratulations. Your bid of {currency} {amount_display} for {package_title} "
            "has been selected.\n\n"
            "The project team will be in touch with next steps."
        ),
    },
}


def _format_amount(cents: int) -> str:
    """Convert cents to display string (e.g. 500000 → '5,000.00')."""
    return f"{cents / 100:,.2f}"


def render(template_id: str, context: dict) -> Optional[tuple[str, str]]:
    template = TEMPLATES.get(template_id)
    if not template:
        logger.warning("notification_template_not_found", template_id=template_id)
        return None

    context = {"app_name": settings.APP_NAME, **context}
    if "amount_cents" in context and "amount_display" not in context:
        context["amount_display"] = _format_amount(context["amount_cents"])

    try:
        subject = template["subject"].format(**context)
        body = template["body"].format(**context)
    except KeyError as e:
        logger.error("notification_template_render_error", template_id=template_id, missing_key=str(e))
        return None
    return subject, body


async def send_notification(template_id: str, to_address: Optional[str], context: dict) -> bool:
    """Render a template and hand it to the email gateway. Never raises."""
    if not to_address:
        logger.warning("notification_no_recipients", template_id=template_id)
        return False

    rendered = render(template_id, context)
    if rendered is None:
        return False
    subject, body = rendered

    try:
        result = await email_service.send(to_address, subject, body)
    except Exception as exc:
        logger.error("notification_dispatch_error", template_id=template_id, error=str(exc))
        result = False

    logger.info(
        "notification_sent",
        template_id=template_id,
        recipient=to_address,
        success=result,
    )
    return result
