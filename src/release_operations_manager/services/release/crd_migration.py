"""CRD migration engine.

Updates CustomResourceDefinitions bundled with a chart without breaking
objects already persisted under the current storage version.

Per CRD, in order:

1. Decode the body once by ``apiVersion``. Unknown encodings abort the run.
2. Absent from the cluster: create it.
3. Fewer desired versions than existing ones: skip (versions are never
   removed automatically).
4. More than one storage version on either side: abort.
5. Storage version name changed: abort.
6. Identical version lists: skip.
7. Otherwise replace with ``dryRun=All`` first, then for real, carrying the
   existing ``resourceVersion`` so a concurrent writer causes a conflict
   instead of being overwritten.

CRDs are processed strictly sequentially. CRDs committed before a later CRD
aborts the run stay committed; there is no cross-CRD rollback.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from release_operations_manager.integrations.kubernetes.models.crd import (
    CRDDocument,
    MigrationAction,
    MigrationResult,
    SchemaDefinition,
    SchemaEncoding,
    SkipReason,
)
from release_operations_manager.services.release.context import (
    OperationContext,
    ensure_context,
)
from release_operations_manager.services.release.exceptions import (
    StorageVersionChangedError,
    TooManyStorageVersionsError,
    UnsupportedSchemaVersionError,
)
from release_operations_manager.services.release.interfaces import SchemaDefinitionClient

logger = structlog.get_logger()


def decode_document(document: CRDDocument) -> SchemaDefinition:
    """Pick the decoder for the document's apiVersion and decode it.

    Raises:
        UnsupportedSchemaVersionError: If the apiVersion has no decoder.
    """
    encoding = SchemaEncoding.from_api_version(document.api_version)
    if encoding is None:
        raise UnsupportedSchemaVersionError(document.name or document.source, document.api_version)
    return SchemaDefinition.decode(document.body, encoding)


def single_storage_version(definition: SchemaDefinition, source: str) -> str | None:
    """Return the storage version name, or None when no version is flagged.

    Raises:
        TooManyStorageVersionsError: If more than one version is flagged.
    """
    names = definition.storage_versions
    if len(names) > 1:
        raise TooManyStorageVersionsError(definition.name, names, source)
    return names[0] if names else None


class CRDMigrationEngine:
    """Apply bundled CRD changes under the storage-version invariants."""

    def __init__(self, client: SchemaDefinitionClient) -> None:
        self._client = client
        self._log = logger.bind(component="crd_migration")

    def migrate(
        self,
        crds: Iterable[CRDDocument],
        ctx: OperationContext | None = None,
    ) -> list[MigrationResult]:
        """Migrate every CRD in order.

        Returns:
            One result per CRD.

        Raises:
            MigrationError: On the first CRD that violates an invariant.
            OperationCancelledError: If *ctx* is cancelled before a network call.
        """
        ctx = ensure_context(ctx)
        results: list[MigrationResult] = []
        for document in crds:
            result = self._migrate_one(document, ctx)
            results.append(result)
        self._log.info(
            "crd_migration_completed",
            total=len(results),
            changed=sum(1 for r in results if not r.skipped),
        )
        return results

    def _migrate_one(self, document: CRDDocument, ctx: OperationContext) -> MigrationResult:
        desired = decode_document(document)
        encoding = desired.encoding
        log = self._log.bind(crd=desired.name, encoding=encoding.value)

        ctx.check()
        current_body = self._client.get(desired.name, encoding)

        if current_body is None:
            storage = single_storage_version(desired, "desired")
            ctx.check()
            self._client.create(desired.body, encoding)
            log.info("crd_created", storage_version=storage)
            return MigrationResult(
                name=desired.name,
                encoding=encoding,
                action=MigrationAction.CREATED,
                storage_version=storage,
            )

        existing = SchemaDefinition.decode(current_body, encoding)

        if len(desired.versions) < len(existing.versions):
            log.warning(
                "crd_version_removal_skipped",
                existing_versions=[v.name for v in existing.versions],
                desired_versions=[v.name for v in desired.versions],
            )
            return MigrationResult(
                name=desired.name,
                encoding=encoding,
                action=MigrationAction.SKIPPED,
                reason=SkipReason.VERSION_REMOVAL,
            )

        existing_storage = single_storage_version(existing, "existing")
        desired_storage = single_storage_version(desired, "desired")
        if desired_storage != existing_storage:
            raise StorageVersionChangedError(desired.name, existing_storage, desired_storage)

        if desired.same_versions_as(existing):
            log.debug("crd_unchanged")
            return MigrationResult(
                name=desired.name,
                encoding=encoding,
                action=MigrationAction.SKIPPED,
                reason=SkipReason.UNCHANGED,
                storage_version=existing_storage,
            )

        body = desired.with_resource_version(existing.resource_version)

        ctx.check()
        self._client.update(body, encoding, dry_run=True)
        log.debug("crd_update_validated")

        ctx.check()
        self._client.update(body, encoding)
        log.info("crd_updated", storage_version=existing_storage)
        return MigrationResult(
            name=desired.name,
            encoding=encoding,
            action=MigrationAction.UPDATED,
            storage_version=existing_storage,
        )
