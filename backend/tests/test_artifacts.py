import io
import zipfile

import pytest

from fileforge.artifacts import ArtifactPackager, content_type_for
from fileforge.errors import ArtifactUnavailableError, NotFoundError


@pytest.fixture
def results(tmp_path):
    a = tmp_path / "report_1a2b3c4d.json"
    b = tmp_path / "report_1a2b3c4d.csv"
    a.write_bytes(b'{"ok": true}')
    b.write_bytes(b"ok\ntrue\n")
    return [str(a), str(b)]


def test_single_file_with_content_type(results):
    data, content_type, name = ArtifactPackager().single(results, 0)
    assert data == b'{"ok": true}'
    assert content_type == "application/json"
    assert name == "report_1a2b3c4d.json"
    assert ArtifactPackager().single(results, 1)[1].startswith("text/csv")


def test_single_bad_index(results):
    with pytest.raises(NotFoundError):
        ArtifactPackager().single(results, 5)


def test_zip_contains_every_file(results):
    archive = zipfile.ZipFile(io.BytesIO(ArtifactPackager().zip(results)))
    assert sorted(archive.namelist()) == ["report_1a2b3c4d.csv", "report_1a2b3c4d.json"]
    assert archive.read("report_1a2b3c4d.csv") == b"ok\ntrue\n"


def test_zip_fails_loudly_on_unreadable_file(results, tmp_path):
    missing = str(tmp_path / "gone.pdf")
    with pytest.raises(ArtifactUnavailableError) as exc:
        ArtifactPackager().zip([*results, missing])
    assert isinstance(exc.value, OSError)
    assert "gone.pdf" in exc.value.message
    assert str(tmp_path) not in exc.value.message


def test_zip_groups_use_folders_and_dedupe(results):
    packager = ArtifactPackager()
    data = packager.zip_groups([("photo one", results[:1]), ("photo/two", results[:1]), ("", results[:1]), ("", results[:1])])
    names = zipfile.ZipFile(io.BytesIO(data)).namelist()
    assert names == [
        "photo one/report_1a2b3c4d.json",
        "phototwo/report_1a2b3c4d.json",
        "report_1a2b3c4d.json",
        "report_1a2b3c4d_2.json",
    ]


def test_empty_results():
    with pytest.raises(NotFoundError):
        ArtifactPackager().zip([])


def test_unknown_extension_is_octet_stream():
    assert content_type_for("blob.xyz") == "application/octet-stream"
