import pytest
from sqlalchemy.orm import sessionmaker

from audit_core.app import models
from audit_core.app.models import FoundStatus, ScanStatus, ScanType
from audit_core.app.services import AuditNotFoundError, ScanReconciler
from audit_core.app.services.reconcile_service import (
    MSG_ASSET_NOT_FOUND, MSG_FOUND, MSG_FOUND_WRONG_BIN, MSG_SERIAL_COMPLETE,
    MSG_SERIAL_COMPLETE_WRONG_BIN, MSG_SERIAL_WAITING, append_note, is_bin_mismatch,
)

from conftest import make_item


def events(db, audit_id):
    return db.query(models.ScanEvent).filter(models.ScanEvent.audit_id == audit_id).all()


def test_bin_mismatch_needs_both_bins():
    assert is_bin_mismatch("A-1", "B-2")
    assert not is_bin_mismatch("A-1", "A-1")
    assert not is_bin_mismatch(None, "B-2")
    assert not is_bin_mismatch("A-1", None)


def test_append_note_skips_duplicates():
    assert append_note(None, "x") == "x"
    assert append_note("first", "x") == "first\nx"
    assert append_note("first\nx", "x") == "first\nx"


def test_unknown_audit(db):
    with pytest.raises(AuditNotFoundError):
        ScanReconciler(db, 999).reconcile(["170403"], [])


def test_unknown_asset_id_records_event(db, audit):
    results = ScanReconciler(db, audit.id).reconcile(["170403"], [])

    assert len(results) == 1
    assert results[0].status == ScanStatus.NOT_FOUND
    assert results[0].audit_item_id is None
    assert results[0].message == MSG_ASSET_NOT_FOUND

    trail = events(db, audit.id)
    assert len(trail) == 1
    assert trail[0].audit_item_id is None
    assert trail[0].type == ScanType.ASSET_ID


def test_asset_id_found_in_expected_bin(db, audit):
    item = make_item(db, audit.id, asset_id="170403", expected_bin="A-1")

    results = ScanReconciler(db, audit.id, current_bin="A-1").reconcile(["170403"], [])
    db.refresh(item)

    assert results[0].status == ScanStatus.FOUND
    assert results[0].message == MSG_FOUND
    assert item.found is True
    assert item.found_status == FoundStatus.FOUND
    assert item.found_bin == "A-1"
    assert item.found_at is not None
    assert item.review_flag is False


def test_asset_id_found_in_wrong_bin(db, audit):
    item = make_item(db, audit.id, asset_id="170403", expected_bin="A-1", notes="Top shelf")

    results = ScanReconciler(db, audit.id, current_bin="B-7").reconcile(["170403"], [])
    db.refresh(item)

    assert results[0].message == MSG_FOUND_WRONG_BIN
    assert item.review_flag is True
    assert item.review_reason == "Expected bin: A-1 | Found bin: B-7"
    assert item.notes == "Top shelf\nBin mismatch: expected A-1; found B-7"


def test_rescan_is_already_found_without_mutation(db, audit):
    item = make_item(db, audit.id, asset_id="170403", expected_bin="A-1")
    ScanReconciler(db, audit.id, current_bin="A-1").reconcile(["170403"], [])
    db.refresh(item)
    found_at = item.found_at

    results = ScanReconciler(db, audit.id, current_bin="C-3").reconcile(["170403"], [])
    db.refresh(item)

    assert results[0].status == ScanStatus.ALREADY_FOUND
    assert item.found_at == found_at
    assert item.found_bin == "A-1"
    assert item.review_flag is False
    assert len(events(db, audit.id)) == 2


def test_missing_item_is_found_by_scan(db, audit):
    item = make_item(db, audit.id, asset_id="170403")
    item.found_status = FoundStatus.MISSING
    db.commit()

    results = ScanReconciler(db, audit.id).reconcile(["170403"], [])
    db.refresh(item)

    assert results[0].status == ScanStatus.FOUND
    assert item.found_status == FoundStatus.FOUND
    assert item.found_bin is None


def test_multi_serial_item_waits_for_every_serial(db, audit):
    item = make_item(db, audit.id, serials_raw="S1 S2", expected_bin="A-1")

    first = ScanReconciler(db, audit.id, current_bin="B-7").reconcile([], ["S1"])
    db.refresh(item)
    assert first[0].status == ScanStatus.FOUND
    assert first[0].message == MSG_SERIAL_WAITING
    assert item.found_status is None

    second = ScanReconciler(db, audit.id, current_bin="B-7").reconcile([], ["S2"])
    db.refresh(item)
    assert second[0].message == MSG_SERIAL_COMPLETE_WRONG_BIN
    assert item.found_status == FoundStatus.FOUND
    assert item.review_flag is True
    assert all(s.found for s in item.serials)


def test_mismatch_note_written_once(db, audit):
    item = make_item(db, audit.id, serials_raw="S1, S2", expected_bin="A-1")

    ScanReconciler(db, audit.id, current_bin="B-7").reconcile([], ["S1", "S2"])
    db.refresh(item)
    # manual reset, then the same wrong-bin scan again
    item.found_status = None
    item.found = False
    db.commit()
    ScanReconciler(db, audit.id, current_bin="B-7").reconcile([], ["S2"])
    db.refresh(item)

    assert item.review_flag is True
    assert item.notes.count("Bin mismatch: expected A-1; found B-7") == 1


def test_serial_already_found(db, audit):
    item = make_item(db, audit.id, serials_raw="S1")
    ScanReconciler(db, audit.id).reconcile([], ["S1"])

    results = ScanReconciler(db, audit.id).reconcile([], ["S1"])
    db.refresh(item)

    assert results[0].status == ScanStatus.ALREADY_FOUND
    assert results[0].audit_item_id == item.id


def test_single_serial_completes_row(db, audit):
    make_item(db, audit.id, serials_raw="S1")
    results = ScanReconciler(db, audit.id).reconcile([], ["S1"])
    assert results[0].message == MSG_SERIAL_COMPLETE


def test_results_keep_token_order_asset_ids_first(db, audit):
    make_item(db, audit.id, asset_id="170403", serials_raw="S1")

    results = ScanReconciler(db, audit.id).reconcile(["999999", "170403"], ["S1", "ZZ"])

    assert [r.token for r in results] == ["999999", "170403", "S1", "ZZ"]
    assert [r.status for r in results] == [
        ScanStatus.NOT_FOUND, ScanStatus.FOUND, ScanStatus.ALREADY_FOUND, ScanStatus.NOT_FOUND,
    ]
    assert len(events(db, audit.id)) == 4


def test_serials_of_other_audits_are_ignored(db, audit):
    other = models.Audit(name="Other")
    db.add(other)
    db.commit()
    make_item(db, other.id, serials_raw="S1")

    results = ScanReconciler(db, audit.id).reconcile([], ["S1"])
    assert results[0].status == ScanStatus.NOT_FOUND


def test_serial_scan_rereads_siblings_committed_by_another_session(db, engine, audit):
    item = make_item(db, audit.id, serials_raw="S1 S2")
    assert [s.found for s in item.serials] == [False, False]

    other = sessionmaker(bind=engine)()
    other.query(models.ItemSerial).filter(models.ItemSerial.serial == "S2").update({"found": True})
    other.commit()
    other.close()

    results = ScanReconciler(db, audit.id).reconcile([], ["S1"])
    db.refresh(item)

    assert results[0].message == MSG_SERIAL_COMPLETE
    assert item.found_status == FoundStatus.FOUND


def test_asset_scan_keeps_notes_written_by_another_session(db, engine, audit):
    item = make_item(db, audit.id, asset_id="170403", expected_bin="A-1")
    assert item.notes is None

    other = sessionmaker(bind=engine)()
    other.query(models.AuditItem).filter(models.AuditItem.id == item.id).update({"notes": "Counted twice"})
    other.commit()
    other.close()

    ScanReconciler(db, audit.id, current_bin="B-7").reconcile(["170403"], [])
    db.refresh(item)

    assert item.notes == "Counted twice\nBin mismatch: expected A-1; found B-7"
