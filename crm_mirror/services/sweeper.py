"""Reconciliation sweep: rebuild mirror state from a full read of the remote open conversations."""

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm_mirror.core.config import settings
from crm_mirror.core.errors import MalformedPayload, RemoteAPIError, SweepInProgress, TenantNotConfigured
from crm_mirror.core.logging import get_logger
from crm_mirror.db.models.tenant import Tenant
from crm_mirror.services.chatwoot_client import ChatwootClient, ChatwootCredentials, credentials_for
from crm_mirror.services.deltas import ConversationDelta, DeltaSource, WriteOutcome
from crm_mirror.services.identity import IdentityResolver
from crm_mirror.services.locks import acquire_sweep_lock, get_sweep_lock_owner, release_sweep_lock
from crm_mirror.services.mirror_writer import MirrorWriter
from crm_mirror.services.normalizer import RemoteConversation, delta_from_conversation

logger = get_logger(__name__)

ClientFactory = Callable[[ChatwootCredentials], ChatwootClient]


@dataclass
class SweepResult:
    tenant_id: int
    assignment_only: bool = False
    scanned: int = 0
    created: int = 0
    updated: int = 0
    skipped_stale: int = 0
    malformed: int = 0
    failed: int = 0
    outcomes: dict[int, WriteOutcome] = field(default_factory=dict, repr=False)

    @property
    def applied(self) -> int:
        return self.created + self.updated

    def record(self, remote_conversation_id: int, outcome: WriteOutcome) -> None:
        self.outcomes[remote_conversation_id] = outcome
        if outcome == WriteOutcome.created:
            self.created += 1
        elif outcome == WriteOutcome.updated:
            self.updated += 1
        else:
            self.skipped_stale += 1

    def as_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "assignment_only": self.assignment_only,
            "applied": self.applied,
            "scanned": self.scanned,
            "created": self.created,
            "updated": self.updated,
            "skipped_stale": self.skipped_stale,
            "malformed": self.malformed,
            "failed": self.failed,
        }


class Sweeper:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis_client,
        client_factory: ClientFactory = ChatwootClient,
        concurrency: int | None = None,
        lock_ttl_seconds: int | None = None,
    ):
        self.session_factory = session_factory
        self.redis = redis_client
        self.client_factory = client_factory
        self.concurrency = concurrency or settings.SWEEP_CONCURRENCY
        self.lock_ttl_seconds = lock_ttl_seconds or settings.SWEEP_LOCK_TTL_SECONDS

    async def sweep(self, tenant_id: int, *, assignment_only: bool = False) -> SweepResult:
        """Pull the tenant's open remote conversations and apply them to the mirror.

        Raises SweepInProgress if another sweep holds the tenant lock,
        TenantNotConfigured if the tenant cannot reach the remote platform, and
        RemoteAPIError when the pull fails. Deltas applied before a failure stay
        applied.
        """
        token = uuid.uuid4().hex
        if not await acquire_sweep_lock(self.redis, tenant_id, token, self.lock_ttl_seconds):
            owner = await get_sweep_lock_owner(self.redis, tenant_id)
            raise SweepInProgress(f"sweep already running for tenant {tenant_id} (lock {owner})")
        try:
            return await self._run(tenant_id, assignment_only)
        finally:
            await release_sweep_lock(self.redis, tenant_id, token)

    async def _run(self, tenant_id: int, assignment_only: bool) -> SweepResult:
        async with self.session_factory() as db:
            tenant = await db.get(Tenant, tenant_id)
            if tenant is None:
                raise TenantNotConfigured(f"tenant {tenant_id} does not exist")
            credentials = credentials_for(tenant)
            resolver = IdentityResolver(db)
            await resolver.preload(tenant_id)

        result = SweepResult(tenant_id=tenant_id, assignment_only=assignment_only)
        semaphore = asyncio.Semaphore(self.concurrency)
        log = logger.bind(tenant_id=tenant_id, assignment_only=assignment_only)
        log.info("sweep_started")

        async with self.client_factory(credentials) as client:
            async for page in client.iter_conversation_pages(status="open"):
                deltas = []
                for raw in page:
                    result.scanned += 1
                    try:
                        conversation = RemoteConversation.model_validate(raw)
                        deltas.append(delta_from_conversation(
                            conversation,
                            tenant_id,
                            DeltaSource.sweep,
                            assignment_only=assignment_only,
                            preview_max_length=settings.PREVIEW_MAX_LENGTH,
                        ))
                    except (ValidationError, MalformedPayload) as exc:
                        result.malformed += 1
                        log.warning("sweep_conversation_malformed", remote_conversation_id=raw.get("id"), error=str(exc))

                outcomes = await asyncio.gather(
                    *(self._apply(semaphore, resolver, delta) for delta in deltas),
                    return_exceptions=True,
                )
                for delta, outcome in zip(deltas, outcomes):
                    if isinstance(outcome, BaseException):
                        result.failed += 1
                        log.error("sweep_write_failed", remote_conversation_id=delta.remote_conversation_id, error=repr(outcome))
                    else:
                        result.record(delta.remote_conversation_id, outcome)

        log.info("sweep_completed", **result.as_dict())
        return result

    async def _apply(self, semaphore: asyncio.Semaphore, resolver: IdentityResolver, delta: ConversationDelta) -> WriteOutcome:
        async with semaphore:
            async with self.session_factory() as db:
                return await MirrorWriter(db, resolver).apply(delta)

    async def sweep_all(self, *, assignment_only: bool = False) -> dict[int, SweepResult]:
        """Sweep every tenant with a remote account; one tenant's failure never stops the others."""
        async with self.session_factory() as db:
            tenant_ids = (await db.execute(
                select(Tenant.id).where(Tenant.remote_account_id.is_not(None)).order_by(Tenant.id)
            )).scalars().all()

        results: dict[int, SweepResult] = {}
        for tenant_id in tenant_ids:
            try:
                results[tenant_id] = await self.sweep(tenant_id, assignment_only=assignment_only)
            except SweepInProgress:
                logger.info("sweep_skipped_in_progress", tenant_id=tenant_id)
            except (RemoteAPIError, TenantNotConfigured) as exc:
                logger.warning("sweep_aborted", tenant_id=tenant_id, error=str(exc))
            except Exception:
                logger.exception("sweep_crashed", tenant_id=tenant_id)
        return results
