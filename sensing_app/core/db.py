"""Transaction helpers for the data-access layer."""

from __future__ import annotations

import logging
from contextlib import contextmanager

from django.db import DatabaseError, transaction

from .exceptions import DataAccessError, TransactionError

logger = logging.getLogger(__name__)


def _rollback(description: str, using: str | None) -> None:
    try:
        transaction.rollback(using=using)
    except DatabaseError as exc:
        logger.error(f"Rollback failed while {description}")
        raise TransactionError(
            f"Error while attempting to roll back the transaction ({description})."
        ) from exc


@contextmanager
def run_in_transaction(description: str, using: str | None = None):
    """Run the enclosed block as one transaction.

    A database failure inside the block triggers exactly one rollback and is
    re-raised as DataAccessError. If the rollback itself fails, the caller
    receives TransactionError instead. When already inside an atomic block the
    work runs in a savepoint, which Django rolls back on error.
    """
    connection = transaction.get_connection(using)

    if connection.in_atomic_block:
        try:
            with transaction.atomic(using=using):
                yield
        except DatabaseError as exc:
            logger.exception(f"Database error while {description}")
            raise DataAccessError(f"Error while {description}.") from exc
        return

    previous_autocommit = transaction.get_autocommit(using=using)
    transaction.set_autocommit(False, using=using)
    try:
        try:
            yield
        except DatabaseError as exc:
            logger.exception(f"Database error while {description}")
            _rollback(description, using)
            raise DataAccessError(f"Error while {description}.") from exc
        except BaseException:
            _rollback(description, using)
            raise

        try:
            transaction.commit(using=using)
        except DatabaseError as exc:
            logger.exception(f"Commit failed while {description}")
            _rollback(description, using)
            raise DataAccessError("Error while committing the transaction.") from exc
    finally:
        transaction.set_autocommit(previous_autocommit, using=using)


def dictfetch(cursor):
    """Yield each remaining row of a cursor as a column-name keyed dict."""
    columns = [col[0] for col in cursor.description]
    for row in cursor:
        yield dict(zip(columns, row))
