"""Existence precheck: drops rows whose keys are already in the store.

Advisory only: it keeps most store duplicates out of the insert, but the
conditional insert remains the authority on uniqueness.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger

from plate_registry.lib.importer.types import ExistenceResult, ImportRow, KeyKind
from plate_registry.services.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, call_with_retry
from plate_registry.services.store import RecordStore


@dataclass
class PrecheckResult:
    """Rows split by whether either key already exists."""

    admitted: list[ImportRow] = field(default_factory=list)
    duplicates: list[ImportRow] = field(default_factory=list)
    existence: ExistenceResult = field(default_factory=lambda: ExistenceResult(primary={}, secondary={}))


async def check_existence(
    store: RecordStore,
    rows: Sequence[ImportRow],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> ExistenceResult:
    """Look up both key kinds for a batch with one store call per kind."""
    if not rows:
        return ExistenceResult(primary={}, secondary={})

    primary_keys = [row.primary_key for row in rows]
    secondary_keys = [row.secondary_key for row in rows]

    found_primary = await call_with_retry(
        lambda: store.exists_any(KeyKind.PRIMARY, primary_keys),
        description="Primary key precheck",
        max_attempts=max_attempts,
        base_delay=base_delay,
    )
    found_secondary = await call_with_retry(
        lambda: store.exists_any(KeyKind.SECONDARY, secondary_keys),
        description="Secondary key precheck",
        max_attempts=max_attempts,
        base_delay=base_delay,
    )

    return ExistenceResult(
        primary={key: key in found_primary for key in primary_keys},
        secondary={key: key in found_secondary for key in secondary_keys},
    )


async def precheck_rows(
    store: RecordStore,
    rows: Sequence[ImportRow],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> PrecheckResult:
    """Split a batch into rows to write and rows already in the store.

    Args:
        store: Record store to query.
        rows: Locally deduplicated rows of one batch.
        max_attempts: Attempts per query on transient errors.
        base_delay: Backoff base in seconds.

    Returns:
        Admitted rows (in input order), store duplicates, and the raw lookup.
    """
    existence = await check_existence(store, rows, max_attempts=max_attempts, base_delay=base_delay)
    result = PrecheckResult(existence=existence)
    for row in rows:
        if existence.is_present(row):
            result.duplicates.append(row)
        else:
            result.admitted.append(row)

    if result.duplicates:
        logger.info(f"Precheck: {len(result.duplicates)} of {len(rows)} rows already in store")
    return result
