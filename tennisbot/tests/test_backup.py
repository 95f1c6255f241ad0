import json
import os
from datetime import date, datetime, timedelta

import pytest

from tennisbot.core.exceptions import BackupIntegrityError
from tennisbot.db.backup import BackupManager


@pytest.fixture
def backups(database, tmp_path):
    return BackupManager(database, str(tmp_path / "backups"), retention_days=30)


def active_set(store):
    return {(b.id, b.user_id, b.session_date, b.session_time) for b in store.get_active_bookings(datetime(2024, 1, 1))}


def test_backup_and_restore_round_trip(store, backups):
    store.create_booking("alice", date(2024, 6, 10), "14:00")
    store.create_booking("bob", date(2024, 6, 11), "09:00")
    before_active = active_set(store)
    before_stats = store.get_booking_statistics(30)

    info = backups.create_backup()

    # Changes made after the backup must disappear after restore.
    store.create_booking("carol", date(2024, 6, 12), "10:00")
    store.cancel_booking(1, "alice")

    safety = backups.restore(info.path)

    assert active_set(store) == before_active
    assert store.get_booking_statistics(30) == before_stats
    assert safety is not None and os.path.exists(safety.path)


def test_backup_writes_manifest(backups):
    info = backups.create_backup()

    assert info.filename.startswith("tennis_bookings_") and info.filename.endswith(".db")
    with open(info.path + ".json") as f:
        manifest = json.load(f)
    assert manifest["checksum"] == info.checksum
    assert manifest["size"] == info.size
    assert backups.verify_backup(info.path) == info.checksum


def test_corrupted_backup_is_rejected_and_live_db_untouched(store, backups):
    store.create_booking("alice", date(2024, 6, 10), "14:00")
    info = backups.create_backup()
    with open(info.path, "r+b") as f:
        f.seek(100)
        f.write(b"\x00garbage\x00" * 64)

    with pytest.raises(BackupIntegrityError):
        backups.restore(info.path)
    assert len(store.get_bookings_by_user("alice")) == 1


def test_not_a_database_is_rejected(backups, tmp_path):
    bogus = tmp_path / "backups" / "tennis_bookings_bogus.db"
    bogus.write_bytes(b"this is not sqlite" * 100)
    with pytest.raises(BackupIntegrityError):
        backups.verify_backup(str(bogus))


def test_missing_backup_is_rejected(backups, tmp_path):
    with pytest.raises(BackupIntegrityError):
        backups.verify_backup(str(tmp_path / "nope.db"))


def test_list_backups_newest_first(backups):
    first = backups.create_backup()
    second = backups.create_backup()
    old = datetime.now() - timedelta(days=1)
    os.utime(first.path, (old.timestamp(), old.timestamp()))

    assert [b.filename for b in backups.list_backups()] == [second.filename, first.filename]


def test_cleanup_removes_backups_past_retention(backups):
    stale = backups.create_backup()
    fresh = backups.create_backup()
    old = datetime.now() - timedelta(days=45)
    os.utime(stale.path, (old.timestamp(), old.timestamp()))

    deleted = backups.cleanup_old_backups()

    assert deleted == [stale.filename]
    assert not os.path.exists(stale.path)
    assert not os.path.exists(stale.path + ".json")
    assert os.path.exists(fresh.path)


def test_unreadable_manifest_does_not_break_listing_or_cleanup(backups):
    broken = backups.create_backup()
    healthy = backups.create_backup()
    with open(broken.path + ".json", "w") as f:
        f.write("{not json")
    old = datetime.now() - timedelta(days=45)
    os.utime(broken.path, (old.timestamp(), old.timestamp()))

    listed = {b.filename: b.checksum for b in backups.list_backups()}
    assert listed[broken.filename] == ""
    assert listed[healthy.filename] == healthy.checksum

    assert backups.cleanup_old_backups() == [broken.filename]
    assert not os.path.exists(broken.path + ".json")


def test_unreadable_manifest_still_fails_verification(backups):
    info = backups.create_backup()
    with open(info.path + ".json", "w") as f:
        f.write("{not json")
    with pytest.raises(BackupIntegrityError):
        backups.verify_backup(info.path)
