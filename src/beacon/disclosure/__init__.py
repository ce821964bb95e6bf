"""Disclosure Control - 42 CFR Part 2 disclosure verification and recording."""
from beacon.disclosure.control import DISCLOSURE_RESTRICTIONS, DisclosureControl
from beacon.disclosure.matching import text_matches
from beacon.disclosure.models import (
    Disclosure,
    DisclosureRecord,
    DisclosureRequest,
    DisclosureVerification,
    ReDisclosureNotice,
)
from beacon.disclosure.notice import RE_DISCLOSURE_NOTICE_TEXT, generate_re_disclosure_notice

__all__ = [
    "DisclosureControl",
    "DISCLOSURE_RESTRICTIONS",
    "Disclosure",
    "DisclosureRecord",
    "DisclosureRequest",
    "DisclosureVerification",
    "ReDisclosureNotice",
    "RE_DISCLOSURE_NOTICE_TEXT",
    "generate_re_disclosure_notice",
    "text_matches",
]
