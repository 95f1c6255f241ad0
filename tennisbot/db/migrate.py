"""Versioned schema migrations with checksum tracking.

Migration scripts live in ``tennisbot.db.versions`` and are written with the
Alembic ``op`` API. Each one is applied inside its own transaction together
with the row that records it in the ``migrations`` table, so a failed script
leaves neither schema changes nor a version record behind.
"""
import hashlib
import importlib
import inspect
import logging
import pkgutil
from dataclasses import dataclass
from types import ModuleType
from typing import Dict, List, Optional

from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext
from sqlalchemy import delete, insert, select

from tennisbot.core.exceptions import MigrationError
from tennisbot.db.models import MigrationRecord
from tennisbot.db.session import Database

logger = logging.getLogger(__name__)

VERSIONS_PACKAGE = "tennisbot.db.versions"


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    module: ModuleType
    checksum: str


def _checksum(module: ModuleType) -> str:
    source = inspect.getsource(module)
    return hashlib.sha256(source.encode("utf-8")).hexdigest()


def load_migrations(package: str = VERSIONS_PACKAGE) -> List[Migration]:
    """Import every script in the versions package, ordered by version."""
    pkg = importlib.import_module(package)
    migrations = []
    for info in pkgutil.iter_modules(pkg.__path__):
        module = importlib.import_module(f"{package}.{info.name}")
        migrations.append(Migration(
            version=int(module.revision),
            name=module.name,
            module=module,
            checksum=_checksum(module),
        ))
    migrations.sort(key=lambda m: m.version)

    previous: Optional[Migration] = None
    for migration in migrations:
        down_revision = migration.module.down_revision
        expected = previous.module.revision if previous else None
        if previous and previous.version == migration.version:
            raise MigrationError(f"Duplicate migration version {migration.version}")
        if down_revision != expected:
            raise MigrationError(
                f"Migration {migration.version} revises {down_revision!r}, expected {expected!r}"
            )
        previous = migration
    return migrations


class MigrationManager:
    """Applies and rolls back schema migrations against a Database."""

    def __init__(self, database: Database, migrations: Optional[List[Migration]] = None):
        self.database = database
        self.migrations = migrations if migrations is not None else load_migrations()
        self._initialize_migrations_table()

    def _initialize_migrations_table(self) -> None:
        with self.database.engine.begin() as conn:
            MigrationRecord.__table__.create(conn, checkfirst=True)

    def applied(self) -> Dict[int, MigrationRecord]:
        with self.database.session_scope() as db:
            records = db.execute(select(MigrationRecord)).scalars().all()
            return {record.version: record for record in records}

    def current_version(self) -> int:
        return max(self.applied(), default=0)

    def verify_checksums(self) -> None:
        """Raise if an applied migration's source no longer matches its record."""
        applied = self.applied()
        for migration in self.migrations:
            record = applied.get(migration.version)
            if record and record.checksum != migration.checksum:
                raise MigrationError(
                    f"Checksum mismatch for applied migration {migration.version} ({migration.name})"
                )

    def pending(self) -> List[Migration]:
        applied = self.applied()
        current = max(applied, default=0)
        missing = [m for m in self.migrations if m.version < current and m.version not in applied]
        if missing:
            raise MigrationError(
                f"Migration {missing[0].version} is missing below current version {current}"
            )
        return [m for m in self.migrations if m.version > current]

    def run_migrations(self) -> List[Migration]:
        """Apply pending migrations in ascending order; no-op when up to date."""
        self.verify_checksums()
        current = self.current_version()
        logger.info(f"Current database version: {current}")

        pending = self.pending()
        if not pending:
            logger.info("Database is up to date")
            return []

        logger.info(f"Running {len(pending)} migration(s)...")
        for migration in pending:
            logger.info(f"Applying migration {migration.version}: {migration.name}")
            try:
                with self.database.engine.begin() as conn:
                    context = MigrationContext.configure(conn)
                    with Operations.context(context):
                        migration.module.upgrade()
                    conn.execute(
                        insert(MigrationRecord.__table__).values(
                            version=migration.version,
                            name=migration.name,
                            checksum=migration.checksum,
                        )
                    )
            except Exception as e:
                logger.error(f"Migration {migration.version} failed: {e}", exc_info=True)
                raise
            logger.info(f"Migration {migration.version} completed")

        logger.info("All migrations completed successfully")
        return pending

    def rollback(self, target_version: int) -> List[Migration]:
        """Apply reverse scripts in descending order down to, not including, target_version."""
        applied = self.applied()
        current = max(applied, default=0)
        if target_version >= current:
            logger.warning(
                f"Target version {target_version} must be lower than current version {current}"
            )
            return []

        to_rollback = [
            m for m in reversed(self.migrations)
            if target_version < m.version <= current and m.version in applied
        ]
        logger.info(f"Rolling back {len(to_rollback)} migration(s)...")
        for migration in to_rollback:
            logger.info(f"Rolling back migration {migration.version}: {migration.name}")
            try:
                with self.database.engine.begin() as conn:
                    context = MigrationContext.configure(conn)
                    with Operations.context(context):
                        migration.module.downgrade()
                    conn.execute(
                        delete(MigrationRecord.__table__).where(
                            MigrationRecord.__table__.c.version == migration.version
                        )
                    )
            except Exception as e:
                logger.error(f"Rollback {migration.version} failed: {e}", exc_info=True)
                raise
            logger.info(f"Rollback {migration.version} completed")
        return to_rollback

    def status(self) -> List[dict]:
        applied = self.applied()
        return [
            {
                "version": m.version,
                "name": m.name,
                "applied": m.version in applied,
                "executed_at": applied[m.version].executed_at if m.version in applied else None,
            }
            for m in self.migrations
        ]
