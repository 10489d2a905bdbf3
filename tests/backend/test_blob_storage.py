import time

import pytest

from src.casehub.errors import NotFoundError, ValidationError
from src.casehub.infra.storage.blobs import LocalBlobStorageBackend, build_object_path


def test_object_path_layout():
    path = build_object_path("case-1", "identification", "RG Scan.PDF")
    owner, name = path.split("/")
    assert owner == "case-1"
    assert name.startswith("identification_")
    assert name.endswith(".pdf")
    assert build_object_path("case-1", "other", "README") != build_object_path("case-1", "other", "README")


def test_save_read_delete(tmp_path):
    storage = LocalBlobStorageBackend(tmp_path)
    storage.save_file("case-documents", "c1/exams_1.pdf", b"data")
    assert storage.read_file("case-documents", "c1/exams_1.pdf") == b"data"

    storage.delete_file("case-documents", "c1/exams_1.pdf")
    with pytest.raises(NotFoundError):
        storage.read_file("case-documents", "c1/exams_1.pdf")


def test_path_traversal_is_rejected(tmp_path):
    storage = LocalBlobStorageBackend(tmp_path)
    with pytest.raises(ValidationError):
        storage.save_file("case-documents", "../outside.txt", b"x")


def test_signed_url_round_trip_and_expiry(tmp_path):
    storage = LocalBlobStorageBackend(tmp_path)
    url = storage.create_signed_url("reports", "r1/final_report_1.pdf", expires_in=60)
    query = dict(part.split("=") for part in url.split("?", 1)[1].split("&"))
    expires, signature = int(query["expires"]), query["signature"]

    assert url.startswith("/api/v1/storage/reports/r1/final_report_1.pdf?")
    assert storage.verify_signature("reports", "r1/final_report_1.pdf", expires, signature)
    assert not storage.verify_signature("reports", "r1/other.pdf", expires, signature)
    assert not storage.verify_signature(
        "reports", "r1/final_report_1.pdf", expires, signature, now=time.time() + 120
    )
