"""
Service wiring.

Builds every governance component over one store so front ends only deal
with a single object.

Usage:
    services = Services.create(InMemoryStore())
    summary = await services.consents.status(participant_id, actor_id)
"""

from dataclasses import dataclass

import asyncpg
import structlog

from beacon.access.control import RoleAccessControl
from beacon.audit.service import AlertHook, AuditLog
from beacon.compliance.incidents import BreachIncidentRecorder
from beacon.config import Settings, get_settings
from beacon.consent.ledger import ConsentLedger
from beacon.disclosure.control import DisclosureControl
from beacon.llm.client import LLMClient, get_llm_client
from beacon.query.engine import QueryEngine
from beacon.query.executor import QueryExecutor
from beacon.query.formatting import ResponseFormatter
from beacon.query.intent import IntentResolver
from beacon.safety.crisis import CrisisDetector
from beacon.security.encryption import FieldEncryptor
from beacon.sensitive.gate import SensitiveCategoryGate
from beacon.store.base import Store
from beacon.store.postgres import PostgresStore
from beacon.timeutil import Clock, utcnow

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    store: Store
    audit: AuditLog
    access: RoleAccessControl
    consents: ConsentLedger
    disclosures: DisclosureControl
    sensitive: SensitiveCategoryGate
    queries: QueryEngine
    crisis: CrisisDetector
    incidents: BreachIncidentRecorder

    @classmethod
    def create(
        cls,
        store: Store,
        settings: Settings | None = None,
        llm: LLMClient | None = None,
        encryptor: FieldEncryptor | None = None,
        clock: Clock = utcnow,
        on_audit_failure: AlertHook | None = None,
    ) -> "Services":
        settings = settings or get_settings()
        encryptor = encryptor or FieldEncryptor.from_settings(settings.encryption)
        llm = llm or get_llm_client()

        audit = AuditLog(store, encryptor, clock=clock, on_write_failure=on_audit_failure)
        access = RoleAccessControl()
        consents = ConsentLedger(
            store,
            audit,
            encryptor,
            clock=clock,
            expiry_notice_days=settings.compliance.expiry_notice_days,
        )
        sensitive = SensitiveCategoryGate(
            store,
            access,
            consents,
            audit,
            min_documented_need_length=settings.compliance.min_documented_need_length,
            clock=clock,
        )
        queries = QueryEngine(
            store,
            access,
            audit,
            IntentResolver(llm, timeout=settings.llm.intent_timeout),
            QueryExecutor(store, settings.compliance, clock=clock),
            ResponseFormatter(llm, timeout=settings.llm.format_timeout),
            sensitive_gate=sensitive,
            clock=clock,
        )

        logger.info("Services initialized", store=type(store).__name__, llm=llm.provider)
        return cls(
            store=store,
            audit=audit,
            access=access,
            consents=consents,
            disclosures=DisclosureControl(store, audit, consents, clock=clock),
            sensitive=sensitive,
            queries=queries,
            crisis=CrisisDetector(llm, timeout=settings.llm.intent_timeout),
            incidents=BreachIncidentRecorder(audit, clock=clock),
        )


async def create_postgres_services(settings: Settings | None = None) -> tuple[Services, asyncpg.Pool]:
    """Open an asyncpg pool and wire services over it. The caller closes the pool."""
    settings = settings or get_settings()
    pool = await asyncpg.create_pool(
        settings.postgres.connection_url,
        min_size=settings.postgres.min_pool_size,
        max_size=settings.postgres.max_pool_size,
        command_timeout=settings.postgres.command_timeout,
    )
    logger.info("PostgreSQL pool created", host=settings.postgres.host)
    return Services.create(PostgresStore(pool), settings=settings), pool
