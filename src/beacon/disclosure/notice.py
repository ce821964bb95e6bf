"""Prohibition on re-disclosure notice (42 CFR Part 2)."""
from datetime import date, datetime

from beacon.disclosure.models import ReDisclosureNotice

RE_DISCLOSURE_NOTICE_TEXT = (
    "NOTICE: This information has been disclosed to you from records protected by "
    "Federal confidentiality rules (42 CFR Part 2). The Federal rules prohibit you from "
    "making any further disclosure of this information unless further disclosure is "
    "expressly permitted by the written consent of the person to whom it pertains or as "
    "otherwise permitted by 42 CFR Part 2. A general authorization for the release of "
    "medical or other information is NOT sufficient for this purpose. The Federal rules "
    "restrict any use of the information to criminally investigate or prosecute any "
    "alcohol or drug abuse patient."
)


def generate_re_disclosure_notice(disclosure_date: date | datetime) -> ReDisclosureNotice:
    """Pure: the same date always yields the same notice."""
    if isinstance(disclosure_date, datetime):
        disclosure_date = disclosure_date.date()
    return ReDisclosureNotice(
        notice_text=RE_DISCLOSURE_NOTICE_TEXT,
        included_date=disclosure_date,
    )
