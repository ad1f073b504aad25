"""Tests for WhatsApp click-to-chat links."""
import pytest

from clinicbook.whatsapp import (
    format_whatsapp_number,
    generate_whatsapp_link,
    to_international_number,
    waitlist_notification_message,
)


@pytest.mark.parametrize(
    "phone,expected",
    [
        ("+49 (171) 123-45", "+4917112345"),
        ("0171 1234567", "01711234567"),
        ("+491711234567", "+491711234567"),
    ],
)
def test_format_whatsapp_number(phone, expected):
    assert format_whatsapp_number(phone) == expected


@pytest.mark.parametrize(
    "phone,expected",
    [
        ("0171 1234567", "+491711234567"),
        ("+43 660 12345", "+4366012345"),
        ("491711234567", "+491711234567"),
    ],
)
def test_to_international_number(phone, expected):
    assert to_international_number(phone) == expected


def test_link_encodes_message_like_uri_component():
    link = generate_whatsapp_link("+49 171 1234567", "Hallo Anna! Termin: 03.11. (10:00) & mehr")

    assert link == (
        "https://wa.me/491711234567?text="
        "Hallo%20Anna!%20Termin%3A%2003.11.%20(10%3A00)%20%26%20mehr"
    )


def test_link_encodes_umlauts_and_newlines():
    link = generate_whatsapp_link("+491711234567", "Grüße\n")

    assert link.endswith("?text=Gr%C3%BC%C3%9Fe%0A")


def test_waitlist_notification_message():
    message = waitlist_notification_message(
        "Anna", "Hydrafacial", "03.11.2026", "10:00", "Beauty Berlin", "https://x.test/book/beauty-berlin"
    )

    assert message.startswith("Hallo Anna!")
    assert "Für Hydrafacial ist ein Termin frei geworden" in message
    assert "https://x.test/book/beauty-berlin" in message
