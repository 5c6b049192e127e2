import uuid
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import ValidationFailed


def parse_id(value: Any, label: str = "id") -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError) as exc:
        raise ValidationFailed(f"Invalid {label}") from exc


def parse_optional_id(value: Any, label: str = "id") -> Optional[uuid.UUID]:
    if value in (None, ""):
        return None
    return parse_id(value, label)


def parse_ids(values: Sequence[Any], label: str = "id") -> List[uuid.UUID]:
    """Parse and de-duplicate ids, keeping first-seen order."""
    seen = set()
    out: List[uuid.UUID] = []
    for v in values:
        u = parse_id(v, label)
        if u not in seen:
            seen.add(u)
            out.append(u)
    return out


def insert_ignore_duplicates(db: Session, model, rows: List[Dict[str, Any]], index_elements: List[str]) -> int:
    """
    Insert rows, silently skipping any that collide with an existing unique key.

    Args:
        db: Session; the caller owns the transaction
        model: Mapped class to insert into
        rows: Column values per row (primary keys and timestamps included)
        index_elements: Columns of the unique key used as the conflict target

    Returns:
        Number of rows actually inserted (as reported by the driver)
    """
    if not rows:
        return 0
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(model).values(rows).on_conflict_do_nothing(index_elements=index_elements)
        return db.execute(stmt).rowcount or 0
    if dialect == "sqlite":
        stmt = sqlite_insert(model).values(rows).on_conflict_do_nothing(index_elements=index_elements)
        return db.execute(stmt).rowcount or 0

    inserted = 0
    for row in rows:
        try:
            with db.begin_nested():
                db.execute(insert(model).values(**row))
            inserted += 1
        except IntegrityError:
            continue
    return inserted
