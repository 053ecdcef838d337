from unittest import mock

import pytest
from django.db import DatabaseError

from sensing_app.campaigns.models import Campaign
from sensing_app.core.db import run_in_transaction
from sensing_app.core.exceptions import DataAccessError, TransactionError


@pytest.fixture
def fake_transaction():
    with mock.patch("sensing_app.core.db.transaction") as tx:
        tx.get_connection.return_value.in_atomic_block = False
        tx.get_autocommit.return_value = True
        yield tx


def test_commits_on_success(fake_transaction):
    with run_in_transaction("testing"):
        pass

    fake_transaction.commit.assert_called_once()
    fake_transaction.rollback.assert_not_called()
    fake_transaction.set_autocommit.assert_has_calls(
        [mock.call(False, using=None), mock.call(True, using=None)]
    )


def test_database_error_rolls_back_once(fake_transaction):
    with pytest.raises(DataAccessError) as exc:
        with run_in_transaction("testing"):
            raise DatabaseError("boom")

    assert isinstance(exc.value.__cause__, DatabaseError)
    fake_transaction.rollback.assert_called_once()
    fake_transaction.commit.assert_not_called()


def test_other_errors_roll_back_and_propagate(fake_transaction):
    with pytest.raises(KeyError):
        with run_in_transaction("testing"):
            raise KeyError("x")

    fake_transaction.rollback.assert_called_once()


def test_failed_rollback_raises_transaction_error(fake_transaction):
    fake_transaction.rollback.side_effect = DatabaseError("connection lost")

    with pytest.raises(TransactionError):
        with run_in_transaction("testing"):
            raise DatabaseError("boom")

    fake_transaction.set_autocommit.assert_called_with(True, using=None)


def test_failed_commit_rolls_back(fake_transaction):
    fake_transaction.commit.side_effect = DatabaseError("disk full")

    with pytest.raises(DataAccessError):
        with run_in_transaction("testing"):
            pass

    fake_transaction.rollback.assert_called_once()


@pytest.mark.django_db
def test_nested_block_uses_savepoint():
    with pytest.raises(DataAccessError):
        with run_in_transaction("testing"):
            Campaign.objects.create(urn="urn:a", name="A")
            raise DatabaseError("boom")

    assert not Campaign.objects.filter(urn="urn:a").exists()
