"""
Shared fixtures.

Time is pinned to FIXED_NOW everywhere so consent effectiveness, expiry
sweeps and trend windows are deterministic.
"""

from datetime import date, datetime, timedelta, timezone

import pytest
import pytest_asyncio

from beacon.access.models import UserContext, UserRole
from beacon.consent.models import ConsentData, ConsentType
from beacon.llm.client import LLMClient, MockLLMClient
from beacon.security.encryption import FieldEncryptor
from beacon.services import Services
from beacon.store.base import Table
from beacon.store.memory import InMemoryStore

FIXED_NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)
TODAY = FIXED_NOW.date()

ORG = "org-1"
OTHER_ORG = "org-2"

PEER = "peer-1"
PEER_NO_CASELOAD = "peer-2"
SUPERVISOR = "supervisor-1"
ADMIN = "admin-1"
OUTSIDER = "peer-9"

P1 = "11111111-1111-4111-8111-111111111111"
P2 = "22222222-2222-4222-8222-222222222222"
P3 = "33333333-3333-4333-8333-333333333333"
UNKNOWN_PARTICIPANT = "99999999-9999-4999-8999-999999999999"

USERS = [
    {"id": PEER, "role": "peer_specialist", "organization_id": ORG},
    {"id": PEER_NO_CASELOAD, "role": "peer_specialist", "organization_id": ORG},
    {"id": SUPERVISOR, "role": "supervisor", "organization_id": ORG},
    {"id": ADMIN, "role": "admin", "organization_id": ORG},
    {"id": OUTSIDER, "role": "peer_specialist", "organization_id": OTHER_ORG},
]

PARTICIPANTS = [
    {
        "id": P1,
        "organization_id": ORG,
        "assigned_peer_id": PEER,
        "status": "active",
        "recovery_date": date(2024, 1, 1),
        "mat_status": True,
        "follow_up_needed": False,
        "created_at": datetime(2025, 5, 3, tzinfo=timezone.utc),
    },
    {
        "id": P2,
        "organization_id": ORG,
        "assigned_peer_id": None,
        "status": "active",
        "recovery_date": date(2025, 4, 1),
        "mat_status": False,
        "follow_up_needed": True,
        "created_at": datetime(2025, 3, 20, tzinfo=timezone.utc),
    },
    {
        "id": P3,
        "organization_id": OTHER_ORG,
        "assigned_peer_id": OUTSIDER,
        "status": "active",
        "recovery_date": date(2023, 6, 1),
        "mat_status": True,
        "follow_up_needed": False,
        "created_at": datetime(2025, 4, 10, tzinfo=timezone.utc),
    },
]

ASSESSMENTS = [
    {
        "participant_id": P1,
        "assessment_type": "BARC_10",
        "total_score": 30,
        "completed_at": datetime(2025, 1, 10, tzinfo=timezone.utc),
    },
    {
        "participant_id": P1,
        "assessment_type": "BARC_10",
        "total_score": 38,
        "completed_at": datetime(2025, 5, 10, tzinfo=timezone.utc),
    },
]


def fixed_clock() -> datetime:
    return FIXED_NOW


def make_consent(
    participant_id: str = P1,
    consent_type: ConsentType = ConsentType.CFR_PART_2,
    expiration_date: date | None = TODAY + timedelta(days=365),
    recipients: list[str] | None = None,
    purpose: str | None = "care coordination",
) -> ConsentData:
    return ConsentData(
        participant_id=participant_id,
        consent_type=consent_type,
        participant_name="Jordan Example",
        date_of_birth=date(1990, 2, 14),
        purpose_of_disclosure=purpose,
        authorized_recipients=recipients if recipients is not None else ["Peer Specialist"],
        information_to_disclose=["recovery progress"],
        expiration_date=expiration_date,
        signature="signed-by-jordan",
        date_signed=TODAY,
    )


def user_context(user_id: str, role: UserRole, organization_id: str = ORG, assigned=None) -> UserContext:
    return UserContext(
        user_id=user_id,
        role=role,
        organization_id=organization_id,
        assigned_participants=set(assigned) if assigned is not None else None,
    )


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def store(clock):
    return InMemoryStore(clock=clock)


@pytest.fixture
def encryptor():
    return FieldEncryptor("test-master-key")


@pytest.fixture
def mock_llm():
    return MockLLMClient()


@pytest.fixture
def alerts():
    """Collects (operation, context) pairs passed to the audit alert hook."""
    return []


@pytest.fixture
def services(store, encryptor, mock_llm, clock, alerts):
    def on_failure(operation, context):
        alerts.append((operation, context))

    return Services.create(
        store,
        llm=LLMClient(backend=mock_llm),
        encryptor=encryptor,
        clock=clock,
        on_audit_failure=on_failure,
    )


@pytest_asyncio.fixture
async def seeded(services):
    """Services over a store holding the standard users, participants and assessments."""
    for user in USERS:
        await services.store.insert(Table.USERS, user)
    for participant in PARTICIPANTS:
        await services.store.insert(Table.PARTICIPANTS, participant)
    for assessment in ASSESSMENTS:
        await services.store.insert(Table.ASSESSMENTS, assessment)
    return services


@pytest.fixture
def peer():
    return user_context(PEER, UserRole.PEER_SPECIALIST, assigned=[P1])


@pytest.fixture
def peer_no_caseload():
    return user_context(PEER_NO_CASELOAD, UserRole.PEER_SPECIALIST, assigned=[])


@pytest.fixture
def supervisor():
    return user_context(SUPERVISOR, UserRole.SUPERVISOR)


@pytest.fixture
def admin():
    return user_context(ADMIN, UserRole.ADMIN)
