import pytest
from sqlalchemy import inspect, text

from tennisbot.core.exceptions import MigrationError
from tennisbot.db.migrate import Migration, MigrationManager, load_migrations
from tennisbot.db.session import Database


@pytest.fixture
def fresh_db(tmp_path):
    db = Database(str(tmp_path / "fresh.db"))
    yield db
    db.dispose()


def table_names(db):
    return set(inspect(db.engine).get_table_names())


def test_migrations_load_in_ascending_order():
    versions = [m.version for m in load_migrations()]
    assert versions == [1, 2, 3, 4]


def test_run_migrations_creates_schema(fresh_db):
    applied = MigrationManager(fresh_db).run_migrations()

    assert [m.version for m in applied] == [1, 2, 3, 4]
    assert {"bookings", "auth_tokens", "user_preferences", "booking_history", "migrations"} <= table_names(fresh_db)
    indexes = {ix["name"] for ix in inspect(fresh_db.engine).get_indexes("bookings")}
    assert "uq_bookings_active_slot" in indexes


def test_rerun_is_a_noop(fresh_db):
    manager = MigrationManager(fresh_db)
    manager.run_migrations()
    assert manager.run_migrations() == []
    assert manager.current_version() == 4


def test_rollback_reverses_in_descending_order(fresh_db):
    manager = MigrationManager(fresh_db)
    manager.run_migrations()

    rolled_back = manager.rollback(2)

    assert [m.version for m in rolled_back] == [4, 3]
    assert manager.current_version() == 2
    assert "booking_history" not in table_names(fresh_db)
    assert "user_preferences" not in table_names(fresh_db)
    assert "auth_tokens" in table_names(fresh_db)


def test_rollback_to_current_or_higher_does_nothing(fresh_db):
    manager = MigrationManager(fresh_db)
    manager.run_migrations()
    assert manager.rollback(4) == []
    assert manager.current_version() == 4


def test_migrate_after_rollback_reapplies(fresh_db):
    manager = MigrationManager(fresh_db)
    manager.run_migrations()
    manager.rollback(0)
    assert manager.current_version() == 0
    assert [m.version for m in manager.run_migrations()] == [1, 2, 3, 4]


def test_checksum_drift_is_rejected(fresh_db):
    MigrationManager(fresh_db).run_migrations()
    with fresh_db.engine.begin() as conn:
        conn.execute(text("UPDATE migrations SET checksum = 'tampered' WHERE version = 2"))

    with pytest.raises(MigrationError):
        MigrationManager(fresh_db).run_migrations()


def test_failed_migration_leaves_no_trace(fresh_db):
    class BrokenModule:
        revision = "001"
        down_revision = None
        name = "broken"

        @staticmethod
        def upgrade():
            from alembic import op
            import sqlalchemy as sa

            op.create_table("half_done", sa.Column("id", sa.Integer, primary_key=True))
            raise RuntimeError("boom")

    manager = MigrationManager(fresh_db, [Migration(1, "broken", BrokenModule, "x")])
    with pytest.raises(RuntimeError):
        manager.run_migrations()

    assert manager.current_version() == 0
    assert "half_done" not in table_names(fresh_db)


def test_status_reports_pending(fresh_db):
    manager = MigrationManager(fresh_db)
    manager.run_migrations()
    manager.rollback(3)
    status = {row["version"]: row["applied"] for row in manager.status()}
    assert status == {1: True, 2: True, 3: True, 4: False}
