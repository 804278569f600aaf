"""Business identifiers in the form PREFIX-YEAR-NNNNNN.

Each PREFIX-YEAR scope has a counter row that is bumped with a single
``UPDATE ... SET value = value + 1 RETURNING value``, so concurrent creators
never read the same value. The formatted number is still checked against
the target column (rows imported from elsewhere may already use it); after
``NUMBER_MAX_ATTEMPTS`` collisions the generator falls back to
PREFIX-<unix ms> so creation never blocks.
"""

import logging
import time
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice.config import settings
from backoffice.models.sequence import SequenceCounter

logger = logging.getLogger(__name__)


def _increment(db: Session, scope: str) -> int:
    for _ in range(2):
        value = db.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == scope)
            .values(value=SequenceCounter.value + 1)
            .returning(SequenceCounter.value)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()
        if value is not None:
            return value
        # First number of this scope
        try:
            with db.begin_nested():
                db.add(SequenceCounter(name=scope, value=1))
            return 1
        except IntegrityError:
            logger.debug("Counter %s created concurrently, retrying increment", scope)
    raise RuntimeError(f"Could not allocate a number for {scope}")


def format_number(prefix: str, year: int, value: int) -> str:
    return f"{prefix}-{year}-{value:0{settings.NUMBER_PAD_WIDTH}d}"


def fallback_number(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}"


def next_number(db: Session, prefix: str, column, *, year: int | None = None) -> str:
    """Allocate the next free identifier for ``column`` (e.g. ``Order.order_number``).

    Runs inside the caller's transaction; the counter bump commits or rolls
    back with the document that uses the number.
    """
    year = year or datetime.now(timezone.utc).year
    scope = f"{prefix}-{year}"
    for attempt in range(settings.NUMBER_MAX_ATTEMPTS):
        candidate = format_number(prefix, year, _increment(db, scope))
        taken = db.execute(select(column).where(column == candidate)).first()
        if taken is None:
            return candidate
        logger.warning("Identifier %s already taken (attempt %d)", candidate, attempt + 1)

    candidate = fallback_number(prefix)
    logger.warning("Falling back to time-based identifier %s for scope %s", candidate, scope)
    return candidate
