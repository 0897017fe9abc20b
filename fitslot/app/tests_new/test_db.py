from types import SimpleNamespace

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from fitslot.app.core import db as db_module
from fitslot.app.domain.models import Studio


def _dbapi_error(orig):
    return OperationalError("SELECT 1", {}, orig)


def test_is_transient_error_by_sqlstate():
    assert db_module.is_transient_error(_dbapi_error(SimpleNamespace(sqlstate="40001")))
    assert db_module.is_transient_error(_dbapi_error(SimpleNamespace(sqlstate="40P01")))
    assert db_module.is_transient_error(_dbapi_error(SimpleNamespace(pgcode="55P03")))
    assert not db_module.is_transient_error(_dbapi_error(SimpleNamespace(sqlstate="23505")))


def test_is_transient_error_sqlite_lock_and_non_db_errors():
    assert db_module.is_transient_error(_dbapi_error(Exception("database is locked")))
    assert not db_module.is_transient_error(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))
    assert not db_module.is_transient_error(ValueError("slot_full"))


@pytest.mark.asyncio
async def test_database_handle_reports_dialect(db):
    assert db.dialect_name == "sqlite"


@pytest.mark.asyncio
async def test_transaction_commits_on_exit_and_rolls_back_on_error(db):
    async with db.transaction() as session:
        session.add(Studio(name="Committed"))

    with pytest.raises(RuntimeError):
        async with db.transaction() as session:
            session.add(Studio(name="Rolled back"))
            await session.flush()
            raise RuntimeError("boom")

    async with db.session() as session:
        names = (await session.execute(select(Studio.name))).scalars().all()
        count = await session.scalar(select(func.count(Studio.id)))
    assert names == ["Committed"]
    assert count == 1


@pytest.mark.asyncio
async def test_init_schema_force_recreates_tables(db, make_studio):
    await make_studio()
    called = []
    await db.init_schema(force=True, on_create=called.append)
    async with db.session() as session:
        assert await session.scalar(select(func.count(Studio.id))) == 0
    assert called == [db.engine]
