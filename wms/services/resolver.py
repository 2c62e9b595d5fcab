"""Duplicate and cross-warehouse screening for uploaded rows."""
import logging
from collections import Counter
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

DEFAULT_LOOKUP_SLICE = 5000


class Classification(str, Enum):
    """Outcome of screening one row against stored and already-seen keys."""

    NEW = "NEW"
    DUPLICATE_SAME_PARTITION = "DUPLICATE_SAME_PARTITION"
    DUPLICATE_CROSS_PARTITION = "DUPLICATE_CROSS_PARTITION"
    DUPLICATE_IN_BATCH = "DUPLICATE_IN_BATCH"


class BatchSeenIndex:
    """Running multiset of natural keys read so far in one upload."""

    def __init__(self):
        self._counts: Counter = Counter()

    def add(self, key: str) -> int:
        """Record one occurrence of key and return its running count."""
        self._counts[key] += 1
        return self._counts[key]

    def count(self, key: str) -> int:
        return self._counts[key]

    def __contains__(self, key: str) -> bool:
        return self._counts[key] > 0

    def __len__(self) -> int:
        return len(self._counts)


def same_partition(stored: Any, target: Any) -> bool:
    """Compare warehouse ids that may arrive as int or str."""
    if stored is None or target is None:
        return stored is None and target is None
    return str(stored).strip() == str(target).strip()


def classify(
    row: Mapping[str, Any],
    existing_index: Mapping[str, Any],
    batch_seen_index: BatchSeenIndex,
    target_partition: Any,
    natural_key: str = "wsn",
) -> Classification:
    """
    Classify a row.

    Precedence: stored under another warehouse, then stored under the same
    warehouse, then repeated earlier in this upload, then new. The caller
    adds the row's key to batch_seen_index before calling, so the first
    occurrence of a repeated key is NEW and later ones DUPLICATE_IN_BATCH.

    Args:
        row: Canonical row
        existing_index: Natural key -> stored warehouse id, for keys already persisted
        batch_seen_index: Keys seen so far in this upload (including this row)
        target_partition: Warehouse id the upload targets
        natural_key: Name of the natural key column

    Returns:
        Classification of the row
    """
    key = row[natural_key]
    if key in existing_index:
        if not same_partition(existing_index[key], target_partition):
            return Classification.DUPLICATE_CROSS_PARTITION
        return Classification.DUPLICATE_SAME_PARTITION
    if batch_seen_index.count(key) > 1:
        return Classification.DUPLICATE_IN_BATCH
    return Classification.NEW


def build_existing_index(
    db: Session,
    model,
    keys: Iterable[str],
    natural_key: str = "wsn",
    partition_column: Optional[str] = "warehouse_id",
    slice_size: int = DEFAULT_LOOKUP_SLICE,
) -> Dict[str, Any]:
    """
    Look up which of the upload's keys are already stored, and where.

    Issues one IN query per slice of keys rather than one query per row.

    Args:
        db: Database session
        model: Target table model
        keys: Natural keys of the upload
        natural_key: Name of the natural key column
        partition_column: Warehouse column, or None for unpartitioned tables
        slice_size: Maximum keys bound into one query

    Returns:
        Mapping of stored natural key to its warehouse id (None when unpartitioned)
    """
    unique_keys = list(dict.fromkeys(keys))
    if not unique_keys:
        return {}

    key_col = getattr(model, natural_key)
    columns = [key_col]
    if partition_column:
        columns.append(getattr(model, partition_column))

    index: Dict[str, Any] = {}
    for start in range(0, len(unique_keys), slice_size):
        key_slice = unique_keys[start:start + slice_size]
        for record in db.query(*columns).filter(key_col.in_(key_slice)):
            index[record[0]] = record[1] if partition_column else None

    logger.info(
        f"🔍 Existing-key lookup on {model.__tablename__}: "
        f"{len(index)} of {len(unique_keys)} keys already stored"
    )
    return index
