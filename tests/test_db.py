import json

from curation.db.db import init_db, load_collection, reset_db, save_collection
from curation.models import LifecycleState, SourceKind, TrialRole, new_manual_entry
from curation.store import CurationStore, serialize_entry

from conftest import make_candidates, make_record


def test_round_trip_preserves_ids_flags_and_order(tmp_path):
    db_path = str(tmp_path / "curation.db")
    store = CurationStore(SourceKind.CLINICAL_TRIAL)
    store.promote(make_candidates(SourceKind.CLINICAL_TRIAL, ids=("NCT00000003", "NCT00000001")))
    store.add_manual(new_manual_entry(make_record(SourceKind.CLINICAL_TRIAL, "NCT00000002", "Manual trial")))
    store.set_visibility("NCT00000001", True)
    store.set_role("NCT00000003", TrialRole.SPONSOR)

    conn = init_db(db_path)
    assert save_collection(conn, user_id="u1", kind=SourceKind.CLINICAL_TRIAL, entries=store.all()) == 3
    conn.close()

    conn = init_db(db_path)
    loaded = load_collection(conn, user_id="u1", kind=SourceKind.CLINICAL_TRIAL)
    conn.close()
    assert [e.id for e in loaded] == ["NCT00000003", "NCT00000001", "NCT00000002"]
    assert [e.is_visible for e in loaded] == [False, True, True]
    assert loaded[0].role == TrialRole.SPONSOR
    assert loaded[2].lifecycle_state == LifecycleState.MANUAL
    assert loaded == store.all()


def test_media_round_trip_preserves_featured_flag(tmp_path):
    db_path = str(tmp_path / "curation.db")
    ids = ("https://example.com/c", "https://example.com/a", "https://example.com/b")
    store = CurationStore(SourceKind.MEDIA)
    store.promote(make_candidates(SourceKind.MEDIA, ids=ids))
    store.set_featured("https://example.com/a", True)
    store.set_visibility("https://example.com/b", True)

    conn = init_db(db_path)
    assert save_collection(conn, user_id="u1", kind=SourceKind.MEDIA, entries=store.all()) == 3
    conn.close()

    conn = init_db(db_path)
    loaded = load_collection(conn, user_id="u1", kind=SourceKind.MEDIA)
    conn.close()
    assert [e.id for e in loaded] == list(ids)
    assert [e.is_featured for e in loaded] == [False, True, False]
    assert [e.is_visible for e in loaded] == [False, False, True]
    assert loaded == store.all()


def test_save_replaces_previous_collection(tmp_path):
    conn = init_db(str(tmp_path / "c.db"))
    entries = [new_manual_entry(make_record(external_id=i)) for i in ("1", "2")]
    save_collection(conn, user_id="u1", kind=SourceKind.PUBLICATION, entries=entries)
    save_collection(conn, user_id="u1", kind=SourceKind.PUBLICATION, entries=entries[1:])
    assert [e.id for e in load_collection(conn, user_id="u1", kind=SourceKind.PUBLICATION)] == ["2"]


def test_collections_are_scoped_by_user_and_kind(tmp_path):
    conn = init_db(str(tmp_path / "c.db"))
    save_collection(conn, user_id="u1", kind=SourceKind.PUBLICATION, entries=[new_manual_entry(make_record(external_id="1"))])
    assert load_collection(conn, user_id="u2", kind=SourceKind.PUBLICATION) == []
    assert load_collection(conn, user_id="u1", kind=SourceKind.MEDIA) == []


def test_pending_entries_are_never_saved(tmp_path):
    conn = init_db(str(tmp_path / "c.db"))
    written = save_collection(conn, user_id="u1", kind=SourceKind.PUBLICATION, entries=make_candidates())
    assert written == 0


def test_corrupt_rows_are_dropped_on_load(tmp_path):
    conn = init_db(str(tmp_path / "c.db"))
    good = serialize_entry(new_manual_entry(make_record(external_id="1")))
    no_title = {"record": {"kind": "publication", "external_id": "2"}, "lifecycle_state": "manual"}
    pending = serialize_entry(make_candidates(ids=("4",))[0])
    rows = [
        ("u1", "publication", "1", 0, json.dumps(good)),
        ("u1", "publication", "2", 1, json.dumps(no_title)),
        ("u1", "publication", "3", 2, "{not json"),
        ("u1", "publication", "4", 3, json.dumps(pending)),
    ]
    conn.executemany(
        "INSERT INTO curated_entries(user_id, kind, external_id, position, entry_json) VALUES(?, ?, ?, ?, ?)",
        rows,
    )
    conn.commit()
    assert [e.id for e in load_collection(conn, user_id="u1", kind=SourceKind.PUBLICATION)] == ["1"]


def test_reset_db_empties_the_table(tmp_path):
    db_path = str(tmp_path / "c.db")
    conn = init_db(db_path)
    save_collection(conn, user_id="u1", kind=SourceKind.PUBLICATION, entries=[new_manual_entry(make_record())])
    conn.close()
    reset_db(db_path)
    conn = init_db(db_path)
    assert load_collection(conn, user_id="u1", kind=SourceKind.PUBLICATION) == []
    conn.close()
