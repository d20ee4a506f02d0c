"""Sync coordinator: ordered, partially-failing writes to local and remote.

Entities are written in dependency order. PersonalInfo is the critical
gate: if it fails, the run aborts, its remote write is compensated and no
other entity is attempted. The other four are best-effort; each failure
is recorded in the SyncReport and the run continues. The coordinator
never retries. Callers re-invoke ``resync`` with the failed entities, and
every write is an upsert so repeating one is safe.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Protocol

from fitplan.core.audit.logger import AuditLogger
from fitplan.domains.health.connectors import LocalCacheStore, RemoteStore, adapters
from fitplan.domains.health.domain_logic.models import (
    CRITICAL_ENTITY,
    ENTITY_ORDER,
    ComputedMetrics,
    OnboardingSections,
)
from fitplan.domains.health.errors import StoreTimeout
from fitplan.domains.health.sync.report import SyncReport

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class CancelToken(Protocol):
    """Anything with ``is_set()``, e.g. ``threading.Event``."""

    def is_set(self) -> bool: ...


class _EntityFailure(Exception):
    """One entity write failed. Carries what compensation needs."""

    def __init__(
        self,
        exc: Exception,
        *,
        local_saved: bool,
        upsert_attempted: bool = False,
        previous: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"{type(exc).__name__}: {exc}")
        self.error_type = type(exc).__name__
        self.local_saved = local_saved
        self.upsert_attempted = upsert_attempted
        self.previous = previous


class SyncCoordinator:
    """Writes onboarding entities to the local cache and the remote store.

    Per entity: write local (``saved_local``), fetch the remote copy, apply
    the local-wins merge (flagging ``conflict`` when revisions differ),
    upsert, then mark ``saved_remote``.

    Usage::

        coordinator = SyncCoordinator(local_cache, remote_store, audit_logger=audit)
        report = await coordinator.sync("u1", sections, metrics)
        report.raise_for_status()
    """

    def __init__(
        self,
        local_cache: LocalCacheStore,
        remote_store: RemoteStore,
        *,
        audit_logger: AuditLogger | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        concurrent_best_effort: bool = False,
    ) -> None:
        self._local = local_cache
        self._remote = remote_store
        self._audit = audit_logger
        self._timeout = timeout_seconds
        self._concurrent = concurrent_best_effort

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def sync(
        self,
        user_id: str,
        sections: OnboardingSections,
        metrics: ComputedMetrics | None = None,
        *,
        entities: list[str] | None = None,
        cancel_token: CancelToken | None = None,
    ) -> SyncReport:
        """Write the given entities (default: all five) in dependency order.

        Never raises for store failures; inspect or ``raise_for_status()``
        the returned report.
        """
        start = time.perf_counter()
        report = SyncReport(user_id=user_id)
        documents = adapters.sections_to_entities(sections, metrics)
        wanted = [e for e in ENTITY_ORDER if entities is None or e in entities]
        rest = [e for e in wanted if e != CRITICAL_ENTITY]

        try:
            if CRITICAL_ENTITY in wanted:
                if _is_set(cancel_token):
                    report.cancelled = True
                    report.not_attempted.extend(wanted)
                    return report
                if not await self._write_critical(user_id, documents[CRITICAL_ENTITY], report):
                    report.not_attempted.extend(rest)
                    return report

            if self._concurrent and rest:
                # Only among best-effort entities, and only after the critical gate
                if _is_set(cancel_token):
                    report.cancelled = True
                    report.not_attempted.extend(rest)
                else:
                    await asyncio.gather(*(
                        self._write_best_effort(user_id, entity, documents[entity], report)
                        for entity in rest
                    ))
            else:
                for index, entity in enumerate(rest):
                    if _is_set(cancel_token):
                        report.cancelled = True
                        report.not_attempted.extend(rest[index:])
                        break
                    await self._write_best_effort(user_id, entity, documents[entity], report)
            return report
        finally:
            _order(report)
            report.duration_ms = (time.perf_counter() - start) * 1000
            logger.info(
                "Sync for user %s finished: %s (ok=%d failed=%d conflicts=%d) in %.0fms",
                user_id,
                report.status,
                len(report.succeeded),
                len(report.failed),
                len(report.conflicts),
                report.duration_ms,
            )

    async def resync(
        self,
        user_id: str,
        entities: list[str] | None = None,
        *,
        cancel_token: CancelToken | None = None,
    ) -> SyncReport:
        """Re-send entities from the local cache.

        ``entities=None`` means every cached entity not yet ``saved_remote``.
        PersonalInfo is added whenever the remote does not hold it yet, so a
        best-effort entity is never written without its parent profile.
        """
        wanted = list(entities) if entities is not None else self.pending_entities(user_id)
        if wanted and CRITICAL_ENTITY not in wanted and not await self._remote_has_profile(user_id):
            wanted.append(CRITICAL_ENTITY)

        canonical: dict[str, dict[str, Any] | None] = {}
        for entity in ENTITY_ORDER:
            document, found = self._local.get(user_id, entity)
            canonical[entity] = adapters.from_local_document(document)[0] if found else None
        sections, metrics = adapters.entities_to_sections(canonical)

        logger.info("Resync for user %s: %s", user_id, ",".join(wanted) or "nothing pending")
        return await self.sync(
            user_id, sections, metrics, entities=wanted, cancel_token=cancel_token
        )

    def pending_entities(self, user_id: str) -> list[str]:
        """Cached entities whose latest local edit has not reached the remote."""
        pending = []
        for entity in ENTITY_ORDER:
            document, found = self._local.get(user_id, entity)
            if found and document.get("syncState") != "saved_remote":
                pending.append(entity)
        return pending

    async def delete_remote(self, user_id: str) -> list[str]:
        """Delete every remote entity of a user, dependents first.

        Returns:
            Entities that existed and were deleted.

        Raises:
            StoreError: If any delete fails; earlier deletes stay applied.
        """
        deleted = []
        for entity in reversed(ENTITY_ORDER):
            table = adapters.remote_table(entity)
            if await self._remote_call("delete", self._remote.delete(user_id, table)):
                deleted.append(entity)
        if self._audit is not None and deleted:
            self._audit.log_data_delete(
                user_id=user_id, count=len(deleted), reason="user_request"
            )
        logger.info("Deleted %d remote entities for user %s", len(deleted), user_id)
        return deleted

    # ------------------------------------------------------------------
    # Gate and best-effort wrappers
    # ------------------------------------------------------------------

    async def _write_critical(
        self, user_id: str, canonical: dict[str, Any] | None, report: SyncReport
    ) -> bool:
        entity = CRITICAL_ENTITY
        if canonical is None:
            report.critical_failure = True
            report.failed[entity] = "InputError: no personal info to sync"
            report.states[entity] = "not_saved"
            return False

        started = time.perf_counter()
        try:
            await self._write_entity(user_id, entity, canonical, report)
        except _EntityFailure as failure:
            report.critical_failure = True
            self._record_failure(user_id, entity, failure, report, started)
            if failure.upsert_attempted:
                await self._compensate(user_id, entity, failure.previous, report)
            return False

        self._audit_write(user_id, entity, started, conflict=entity in report.conflicts)
        return True

    async def _write_best_effort(
        self,
        user_id: str,
        entity: str,
        canonical: dict[str, Any] | None,
        report: SyncReport,
    ) -> None:
        if canonical is None:
            report.skipped.append(entity)
            return

        started = time.perf_counter()
        try:
            await self._write_entity(user_id, entity, canonical, report)
        except _EntityFailure as failure:
            self._record_failure(user_id, entity, failure, report, started)
            return
        self._audit_write(user_id, entity, started, conflict=entity in report.conflicts)

    # ------------------------------------------------------------------
    # One entity
    # ------------------------------------------------------------------

    async def _write_entity(
        self,
        user_id: str,
        entity: str,
        canonical: dict[str, Any],
        report: SyncReport,
    ) -> None:
        """Raises _EntityFailure; on success updates ``report``."""
        table = adapters.remote_table(entity)
        document = adapters.to_local_document(canonical, sync_state="saved_local")
        revision = document["revision"]

        try:
            self._local.put(user_id, entity, document)
        except Exception as exc:
            raise _EntityFailure(exc, local_saved=False) from exc

        try:
            previous, found = await self._remote_call("get", self._remote.get(user_id, table))
        except Exception as exc:
            raise _EntityFailure(exc, local_saved=True) from exc

        conflict = found and bool(previous) and previous.get("revision") != revision
        if conflict:
            logger.warning("Conflict on %s for user %s; local copy wins", entity, user_id)
            report.conflicts.append(entity)
            try:
                self._local.put(user_id, entity, adapters.with_sync_state(document, "conflict"))
            except Exception:
                logger.exception("Could not mark %s conflict for user %s", entity, user_id)

        record = adapters.merge_local_wins(
            previous if found else None,
            adapters.to_remote_record(entity, user_id, canonical, revision=revision),
        )
        try:
            await self._remote_call("upsert", self._remote.upsert(user_id, table, record))
        except Exception as exc:
            raise _EntityFailure(
                exc,
                local_saved=True,
                upsert_attempted=True,
                previous=previous if found else None,
            ) from exc

        try:
            self._local.put(user_id, entity, adapters.with_sync_state(document, "saved_remote"))
        except Exception:
            # The remote holds the data; the entity will just be resent once
            logger.exception("Could not mark %s saved_remote for user %s", entity, user_id)

        report.succeeded.append(entity)
        report.states[entity] = "conflict" if conflict else "saved_remote"

    async def _compensate(
        self,
        user_id: str,
        entity: str,
        previous: dict[str, Any] | None,
        report: SyncReport,
    ) -> None:
        """Undo a critical write that may have committed before failing."""
        table = adapters.remote_table(entity)
        try:
            if previous is not None:
                await self._remote_call("restore", self._remote.upsert(user_id, table, previous))
            else:
                await self._remote_call("delete", self._remote.delete(user_id, table))
        except Exception as exc:
            logger.exception("Compensation of %s failed for user %s", entity, user_id)
            report.failed[entity] += f"; compensation failed: {type(exc).__name__}: {exc}"
            return

        report.compensated.append(entity)
        logger.info(
            "Compensated %s for user %s (%s)",
            entity,
            user_id,
            "restored previous" if previous is not None else "deleted",
        )
        if self._audit is not None:
            self._audit.log_data_delete(
                user_id=user_id,
                entity=entity,
                count=1,
                reason="compensating_restore" if previous is not None else "compensating_delete",
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _remote_call(self, step: str, call: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise StoreTimeout(f"remote {step} timed out after {self._timeout:g}s") from exc

    async def _remote_has_profile(self, user_id: str) -> bool:
        table = adapters.remote_table(CRITICAL_ENTITY)
        try:
            _, found = await self._remote_call("get", self._remote.get(user_id, table))
        except Exception:
            logger.warning("Could not check remote profile for user %s; resending it", user_id)
            return False
        return found

    def _record_failure(
        self,
        user_id: str,
        entity: str,
        failure: _EntityFailure,
        report: SyncReport,
        started: float,
    ) -> None:
        logger.warning("Sync of %s failed for user %s: %s", entity, user_id, failure)
        report.failed[entity] = str(failure)
        report.states[entity] = "saved_local" if failure.local_saved else "not_saved"
        self._audit_write(user_id, entity, started, error_type=failure.error_type)

    def _audit_write(
        self,
        user_id: str,
        entity: str,
        started: float,
        *,
        error_type: str | None = None,
        conflict: bool = False,
    ) -> None:
        if self._audit is None:
            return
        self._audit.log_sync_write(
            user_id=user_id,
            entity=entity,
            status="failure" if error_type else "success",
            error_type=error_type,
            duration_ms=(time.perf_counter() - started) * 1000,
            conflict=conflict,
        )


def _is_set(token: CancelToken | None) -> bool:
    return token is not None and token.is_set()


def _order(report: SyncReport) -> None:
    """Put every per-entity collection in dependency order."""
    rank = {entity: index for index, entity in enumerate(ENTITY_ORDER)}
    for name in ("succeeded", "not_attempted", "skipped", "conflicts", "compensated"):
        getattr(report, name).sort(key=rank.__getitem__)
    report.failed = dict(sorted(report.failed.items(), key=lambda item: rank[item[0]]))
    report.states = dict(sorted(report.states.items(), key=lambda item: rank[item[0]]))
