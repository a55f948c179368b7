"""Rollback policies.

A rollback never rewinds history: it records a new revision that copies the
chart, values and manifest of the target revision, applies that manifest and
supersedes whatever was deployed before.

Any object with ``rollback_release(spec)`` can be handed to the orchestrator;
the two policies here share a helper, not a base class.
"""

from __future__ import annotations

import copy

import structlog

from release_operations_manager.integrations.kubernetes.models.release import (
    Release,
    ReleaseSpec,
    ReleaseStatus,
)
from release_operations_manager.services.release.exceptions import (
    ReleaseError,
    ReleaseNotFoundError,
)
from release_operations_manager.services.release.interfaces import ManifestApplier, ReleaseStore

logger = structlog.get_logger()

RESTORABLE_STATUSES = (ReleaseStatus.DEPLOYED, ReleaseStatus.SUPERSEDED)


def select_default_target(history: list[Release]) -> Release | None:
    """Pick the revision the default policy restores.

    If the latest revision is still deployed (the failed operation recorded
    nothing), that deployed state is restored. Otherwise the newest earlier
    revision that was deployed or superseded is used.
    """
    if not history:
        return None
    latest = history[-1]
    if latest.status is ReleaseStatus.DEPLOYED:
        return latest
    for release in reversed(history[:-1]):
        if release.status in RESTORABLE_STATUSES:
            return release
    return None


def restore_revision(
    store: ReleaseStore,
    applier: ManifestApplier,
    history: list[Release],
    target: Release,
    *,
    force: bool = False,
    wait: bool = False,
    timeout: float | None = None,
    description: str | None = None,
) -> Release:
    """Record and apply a new revision copying *target*.

    Every previously deployed or pending revision ends up superseded; the new
    revision ends up deployed, or failed if applying raises.
    """
    log = logger.bind(release=target.name, namespace=target.namespace)
    restored = Release(
        name=target.name,
        namespace=target.namespace,
        revision=history[-1].revision + 1,
        status=ReleaseStatus.PENDING_ROLLBACK,
        chart=copy.deepcopy(target.chart),
        config=copy.deepcopy(target.config),
        chart_values=copy.deepcopy(target.chart_values),
        manifest=target.manifest,
        hooks=copy.deepcopy(target.hooks),
        description=description or f"Rollback to {target.revision}",
    )
    store.create(restored)
    log.info("rollback_started", target_revision=target.revision, revision=restored.revision)

    try:
        applier.apply(restored.manifest, restored.namespace, force=force, wait=wait, timeout=timeout)
    except Exception as e:
        restored.touch(ReleaseStatus.FAILED, f"Rollback to {target.revision} failed: {e}")
        store.update(restored)
        raise

    for previous in history:
        if previous.status is ReleaseStatus.DEPLOYED or previous.status.is_pending:
            previous.touch(ReleaseStatus.SUPERSEDED)
            store.update(previous)

    restored.touch(ReleaseStatus.DEPLOYED)
    store.update(restored)
    log.info("rollback_completed", revision=restored.revision)
    return restored


class DefaultRollbackPolicy:
    """Restore the most recent deployed state of the release."""

    def __init__(self, store: ReleaseStore, applier: ManifestApplier, *, force: bool = False) -> None:
        self._store = store
        self._applier = applier
        self._force = force

    def rollback_release(self, spec: ReleaseSpec) -> None:
        """Roll back ``spec.release_name`` in ``spec.namespace``.

        Raises:
            ReleaseNotFoundError: If the release has no history.
            ReleaseError: If no revision can be restored, or applying fails.
        """
        history = self._store.history(spec.release_name, spec.namespace)
        if not history:
            raise ReleaseNotFoundError(spec.release_name, spec.namespace)

        target = select_default_target(history)
        if target is None:
            raise ReleaseError(
                "no earlier deployed revision to roll back to",
                release=spec.release_name,
                namespace=spec.namespace,
            )
        restore_revision(
            self._store,
            self._applier,
            history,
            target,
            force=self._force or spec.force,
            wait=spec.wait,
            timeout=spec.timeout.total_seconds(),
        )


class RevisionRollbackPolicy:
    """Restore one fixed revision, optionally with force-replace semantics."""

    def __init__(
        self,
        store: ReleaseStore,
        applier: ManifestApplier,
        revision: int,
        *,
        force: bool = False,
    ) -> None:
        self._store = store
        self._applier = applier
        self._revision = revision
        self._force = force

    def rollback_release(self, spec: ReleaseSpec) -> None:
        history = self._store.history(spec.release_name, spec.namespace)
        if not history:
            raise ReleaseNotFoundError(spec.release_name, spec.namespace)

        target = next((r for r in history if r.revision == self._revision), None)
        if target is None:
            raise ReleaseNotFoundError(spec.release_name, spec.namespace, self._revision)
        restore_revision(
            self._store,
            self._applier,
            history,
            target,
            force=self._force,
            wait=spec.wait,
            timeout=spec.timeout.total_seconds(),
        )
