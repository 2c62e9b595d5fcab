"""Chunked multi-row inserts with ignore-on-conflict on the natural key."""
import logging
from typing import List, Sequence

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wms.exceptions import ChunkWriteError
from wms.services.normalizer import CanonicalRow

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

# Most bound parameters one statement may carry
_MAX_BIND_PARAMS = {
    "postgresql": 65535,
    "sqlite": 32766,  # SQLITE_MAX_VARIABLE_NUMBER since SQLite 3.32
}


def check_dialect(dialect: str) -> None:
    """Raise ValueError unless the database supports conflict-ignoring multi-row inserts."""
    if dialect not in _DIALECT_INSERTS:
        raise ValueError(
            f"Conflict-ignoring bulk insert is not supported on '{dialect}'"
        )


class ChunkedBulkWriter:
    """
    Writes bounded chunks of canonical rows into one table.

    A chunk is committed as one transaction. When its rows would bind more
    parameters than the dialect allows in one statement, the chunk is split
    into several INSERTs inside that transaction, so a chunk size never has
    to be tuned to the table's column count.
    """

    def __init__(self, model, dialect: str, natural_key: str = "wsn", chunk_size: int = 1000):
        """
        Args:
            model: Target table model
            dialect: SQLAlchemy dialect name of the target database
            natural_key: Column carrying the unique constraint
            chunk_size: Most rows accepted per flush

        Raises:
            ValueError: Non-positive chunk size, or a dialect without
                conflict-ignoring multi-row inserts
        """
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        check_dialect(dialect)
        self.model = model
        self.natural_key = natural_key
        self.chunk_size = chunk_size
        self.max_params = _MAX_BIND_PARAMS[dialect]
        self._insert = _DIALECT_INSERTS[dialect]
        self._columns = {column.name for column in model.__table__.columns}

    def flush(self, db: Session, rows: Sequence[CanonicalRow]) -> int:
        """
        INSERT ... ON CONFLICT (natural key) DO NOTHING for one chunk.

        Rows whose key is already stored, or inserted concurrently by another
        upload, are dropped by the database rather than merged.

        Args:
            db: Database session; committed on success, rolled back on failure
            rows: At most chunk_size canonical rows

        Returns:
            Number of rows actually inserted

        Raises:
            ChunkWriteError: The insert failed; nothing from this chunk was written
        """
        if not rows:
            logger.debug("Empty chunk, skipping insert")
            return 0

        inserted = self._execute(db, rows, returning=False)
        logger.debug(
            f"✅ Chunk written to {self.model.__tablename__}: "
            f"{inserted}/{len(rows)} inserted"
        )
        return inserted

    def flush_returning_keys(self, db: Session, rows: Sequence[CanonicalRow]) -> List[str]:
        """Like flush(), but report which natural keys were actually inserted."""
        if not rows:
            return []
        return self._execute(db, rows, returning=True)

    def rows_per_statement(self, column_count: int) -> int:
        return max(1, self.max_params // max(1, column_count))

    def _execute(self, db: Session, rows: Sequence[CanonicalRow], returning: bool):
        if len(rows) > self.chunk_size:
            raise ValueError(
                f"Chunk of {len(rows)} rows exceeds chunk size {self.chunk_size}"
            )

        values = self._prepare(rows)
        collapsed = len(rows) - len(values)
        if collapsed:
            logger.warning(f"⚠️ Collapsed {collapsed} repeated keys within chunk")

        step = self.rows_per_statement(len(values[0]))
        inserted_keys: List[str] = []
        inserted = 0
        try:
            for start in range(0, len(values), step):
                stmt = self._insert(self.model).values(values[start:start + step])
                stmt = stmt.on_conflict_do_nothing(index_elements=[self.natural_key])
                if returning:
                    stmt = stmt.returning(getattr(self.model, self.natural_key))
                result = db.execute(stmt)
                if returning:
                    inserted_keys.extend(result.scalars().all())
                else:
                    inserted += max(result.rowcount or 0, 0)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise ChunkWriteError(
                f"Insert into {self.model.__tablename__} failed: {e}", len(rows)
            ) from e
        return inserted_keys if returning else inserted

    def _prepare(self, rows: Sequence[CanonicalRow]) -> List[CanonicalRow]:
        """Keep table columns only, give every row the same keys, first key wins."""
        names = set()
        for row in rows:
            names.update(name for name in row if name in self._columns)

        unique = {}
        for row in rows:
            key = row[self.natural_key]
            if key not in unique:
                unique[key] = {name: row.get(name) for name in names}
        return list(unique.values())
