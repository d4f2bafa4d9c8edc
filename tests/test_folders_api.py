import importlib
import os
from pathlib import Path

import pytest
from fastapi.testclient import TestClient


def reload_main_with_temp_db(tmp_path: Path):
    os.environ["NOTES_DATABASE_URL"] = f"sqlite:///{(tmp_path / 'notes.db').as_posix()}"
    os.environ["UPLOADS_ROOT"] = str(tmp_path / "uploads")

    import main  # type: ignore

    importlib.reload(main)
    return main


def test_create_folder_trims_name(tmp_path):
    main = reload_main_with_temp_db(tmp_path)

    client = TestClient(main.app)
    resp = client.post("/api/folders", json={"name": "  Recipes  "})
    assert resp.status_code == 201
    data = resp.json()
    assert data["name"] == "Recipes"
    assert data["documentCount"] == 0
    assert set(data) == {"id", "name", "documentCount", "createdAt", "updatedAt"}


@pytest.mark.parametrize("name", ["", "   "])
def test_create_folder_rejects_blank_name(tmp_path, name):
    main = reload_main_with_temp_db(tmp_path)

    client = TestClient(main.app)
    resp = client.post("/api/folders", json={"name": name})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Name is required"


def test_list_folders_sorted_with_document_counts(tmp_path):
    main = reload_main_with_temp_db(tmp_path)

    client = TestClient(main.app)
    beta = client.post("/api/folders", json={"name": "Beta"}).json()
    alpha = client.post("/api/folders", json={"name": "Alpha"}).json()

    doc = client.post("/api/documents", json={"content": "x"}).json()
    client.put(f"/api/documents/{doc['id']}/folder", json={"folderId": beta["id"]})

    resp = client.get("/api/folders")
    assert resp.status_code == 200
    folders = resp.json()
    assert [folder["name"] for folder in folders] == ["Alpha", "Beta"]
    assert folders[0]["id"] == alpha["id"]
    assert folders[0]["documentCount"] == 0
    assert folders[1]["documentCount"] == 1


def test_update_folder(tmp_path):
    main = reload_main_with_temp_db(tmp_path)

    client = TestClient(main.app)
    folder = client.post("/api/folders", json={"name": "Old"}).json()

    resp = client.put(f"/api/folders/{folder['id']}", json={"name": " New "})
    assert resp.status_code == 200
    assert resp.json()["name"] == "New"

    assert client.put(f"/api/folders/{folder['id']}", json={"name": " "}).status_code == 400
    assert client.put("/api/folders/9999", json={"name": "Nope"}).status_code == 404


def test_delete_folder_moves_documents_to_root(tmp_path):
    main = reload_main_with_temp_db(tmp_path)

    client = TestClient(main.app)
    folder = client.post("/api/folders", json={"name": "Archive"}).json()
    d1 = client.post("/api/documents", json={"content": "# One"}).json()
    d2 = client.post("/api/documents", json={"content": "# Two"}).json()
    for doc in (d1, d2):
        resp = client.put(f"/api/documents/{doc['id']}/folder", json={"folderId": folder["id"]})
        assert resp.json() == {"id": doc["id"], "folderId": folder["id"]}

    resp = client.delete(f"/api/folders/{folder['id']}")
    assert resp.status_code == 204

    for doc in (d1, d2):
        fetched = client.get(f"/api/documents/{doc['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["folderId"] is None

    assert client.get("/api/folders").json() == []
    assert client.delete(f"/api/folders/{folder['id']}").status_code == 404

    root_ids = {item["id"] for item in client.get("/api/documents", params={"folderId": "root"}).json()["documents"]}
    assert root_ids == {d1["id"], d2["id"]}


def test_move_document_to_missing_folder_is_rejected(tmp_path):
    main = reload_main_with_temp_db(tmp_path)

    client = TestClient(main.app)
    folder = client.post("/api/folders", json={"name": "Real"}).json()
    doc = client.post("/api/documents", json={"content": "x"}).json()
    client.put(f"/api/documents/{doc['id']}/folder", json={"folderId": folder["id"]})

    resp = client.put(f"/api/documents/{doc['id']}/folder", json={"folderId": folder["id"] + 50})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Folder not found"

    assert client.get(f"/api/documents/{doc['id']}").json()["folderId"] == folder["id"]


def test_move_document_back_to_root_and_missing_document(tmp_path):
    main = reload_main_with_temp_db(tmp_path)

    client = TestClient(main.app)
    folder = client.post("/api/folders", json={"name": "Temp"}).json()
    doc = client.post("/api/documents", json={"content": "x"}).json()
    client.put(f"/api/documents/{doc['id']}/folder", json={"folderId": folder["id"]})

    resp = client.put(f"/api/documents/{doc['id']}/folder", json={"folderId": None})
    assert resp.status_code == 200
    assert resp.json() == {"id": doc["id"], "folderId": None}

    resp = client.put("/api/documents/777/folder", json={"folderId": folder["id"]})
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Document not found"


def test_folder_requests_without_name_are_rejected(tmp_path):
    main = reload_main_with_temp_db(tmp_path)

    client = TestClient(main.app)
    resp = client.post("/api/folders", json={})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Name is required"

    folder = client.post("/api/folders", json={"name": "Named"}).json()
    resp = client.put(f"/api/folders/{folder['id']}", json={})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Name is required"


def test_out_of_range_folder_ids_are_rejected(tmp_path):
    main = reload_main_with_temp_db(tmp_path)

    client = TestClient(main.app)
    huge = "9999999999999999999999999"

    assert client.put(f"/api/folders/{huge}", json={"name": "x"}).status_code == 422
    assert client.delete(f"/api/folders/{huge}").status_code == 422
