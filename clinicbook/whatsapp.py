"""
WhatsApp click-to-chat links.

No messages are sent from the backend: staff get a ``wa.me`` link with a
pre-filled German message and send it from their own WhatsApp account.
"""

import re
from urllib.parse import quote

WA_ME_BASE = "https://wa.me"

# Characters encodeURIComponent leaves alone
_URI_COMPONENT_SAFE = "-_.!~*'()"


def format_whatsapp_number(phone: str) -> str:
    """Strip spaces, dashes and parentheses: "+49 (171) 123-45" -> "+4917112345"."""
    return re.sub(r"[\s\-()]", "", phone)


def to_international_number(phone: str, country_code: str = "49") -> str:
    """
    Normalize a phone number entered in national format.

        "0171 1234567"  -> "+491711234567"
        "+43 660 12345" -> "+4366012345"
    """
    number = re.sub(r"\s", "", phone)
    if number.startswith("0"):
        number = country_code + number[1:]
    if not number.startswith("+"):
        number = "+" + number
    return number


def generate_whatsapp_link(phone: str, message: str) -> str:
    digits = format_whatsapp_number(phone).lstrip("+")
    return f"{WA_ME_BASE}/{digits}?text={quote(message, safe=_URI_COMPONENT_SAFE)}"


# ────────────────────────────────────────────────────────────────
# Message templates
# ────────────────────────────────────────────────────────────────

def waitlist_notification_message(
    customer_name: str,
    service_name: str,
    date: str,
    time: str,
    clinic_name: str,
    booking_url: str,
) -> str:
    return (
        f"Hallo {customer_name}! 👋\n\n"
        f"Gute Nachrichten von {clinic_name}: Für {service_name} ist ein Termin frei geworden.\n\n"
        f"📅 Datum: {date}\n"
        f"🕐 Uhrzeit: {time}\n\n"
        f"Jetzt buchen:\n{booking_url}\n\n"
        "Der Termin wird an die erste Buchung vergeben."
    )
