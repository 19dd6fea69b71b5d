from conftest import make_item


def test_patch_item_recomputes_variance(client, db, audit):
    item = make_item(db, audit.id, on_hand=10, physical_count=10)

    response = client.patch(f"/audit-items/{item.id}", json={"physical_count": 7, "count_variance": 0})
    assert response.status_code == 200
    assert response.json() == {"ok": True, "id": item.id}

    db.refresh(item)
    assert item.physical_count == 7
    assert item.count_variance == 3


def test_patch_blank_number_clears_it(client, db, audit):
    item = make_item(db, audit.id, on_hand=10, physical_count=10)
    client.patch(f"/audit-items/{item.id}", json={"on_hand": ""})
    db.refresh(item)
    assert item.on_hand is None
    assert item.count_variance is None


def test_patch_found_and_review(client, db, audit):
    item = make_item(db, audit.id)
    client.patch(
        f"/audit-items/{item.id}",
        json={"found_status": "FOUND", "found_bin": "A-1", "review_flag": True},
    )
    db.refresh(item)
    assert item.found is True
    assert item.found_bin == "A-1"
    assert item.review_reason == "Needs review"


def test_patch_rejects_unknown_fields(client, db, audit):
    item = make_item(db, audit.id)
    response = client.patch(f"/audit-items/{item.id}", json={"colour": "red"})
    assert response.status_code == 400


def test_patch_rejects_bad_found_status(client, db, audit):
    item = make_item(db, audit.id)
    assert client.patch(f"/audit-items/{item.id}", json={"found_status": "LOST"}).status_code == 400


def test_patch_unknown_item(client):
    assert client.patch("/audit-items/424242", json={"notes": "x"}).status_code == 404


def test_batch_update(client, db, audit):
    a = make_item(db, audit.id, item_code="A")
    b = make_item(db, audit.id, item_code="B")

    response = client.patch(
        f"/audits/{audit.id}/items",
        json={"items": [{"id": a.id, "notes": "checked"}, {"id": b.id, "found_status": "MISSING"}]},
    )
    assert response.status_code == 200
    assert response.json() == {"ok": True, "ids": [a.id, b.id]}

    db.refresh(a)
    db.refresh(b)
    assert a.notes == "checked"
    assert b.found_status.value == "MISSING"


def test_batch_update_is_all_or_nothing(client, db, audit):
    a = make_item(db, audit.id, item_code="A")

    response = client.patch(
        f"/audits/{audit.id}/items",
        json={"items": [{"id": a.id, "notes": "checked"}, {"id": 424242, "notes": "x"}]},
    )
    assert response.status_code == 404
    assert "424242" in response.json()["detail"]

    db.refresh(a)
    assert a.notes is None


def test_batch_update_requires_rows(client, audit):
    assert client.patch(f"/audits/{audit.id}/items", json={"items": []}).status_code == 400


def test_toggle_found_cycles(client, db, audit):
    item = make_item(db, audit.id)

    states = [client.post(f"/audit-items/{item.id}/toggle-found").json()["found_status"] for _ in range(3)]
    assert states == ["FOUND", "MISSING", None]
