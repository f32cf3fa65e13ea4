"""
Tests for npm manifest, lockfile and zip dependency extraction.
"""

import io
import json
import struct
import zipfile

import pytest

from repo_health_guard.dependency_parsers.javascript.npm import (
    UploadedFile,
    extract_dependencies,
    extract_from_text,
    extract_from_upload,
    extract_from_zip,
    extract_lockfile_dependencies,
    get_project_name,
    parse_manifest,
    resolve_dependencies,
)
from repo_health_guard.errors import (
    InvalidInputError,
    NoManifestFoundError,
    UnsupportedFileTypeError,
)

PACKAGE_JSON = {
    "name": "demo-app",
    "dependencies": {"express": "^4.18.2", "left-pad": "1.3.0"},
    "devDependencies": {"jest": "^29.0.0"},
}

LOCKFILE_V1 = {
    "name": "demo-app",
    "lockfileVersion": 1,
    "dependencies": {
        "express": {
            "version": "4.18.2",
            "dependencies": {"accepts": {"version": "1.3.8"}},
        },
        "left-pad": {"version": "1.3.0"},
    },
}


def _zip_bytes(files):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def test_parse_manifest_rejects_non_objects():
    for raw in ("null", "[]", "42", "not json", b"\xff\xfe"):
        with pytest.raises(InvalidInputError, match="non-null object"):
            parse_manifest(raw)


def test_extract_dependencies_merges_dev_dependencies():
    deps = extract_dependencies(PACKAGE_JSON)
    assert deps == {
        "express": "^4.18.2",
        "left-pad": "1.3.0",
        "jest": "^29.0.0",
    }


def test_extract_dependencies_ignores_non_string_versions():
    deps = extract_dependencies({"dependencies": {"ok": "1.0.0", "bad": 3, "worse": None}})
    assert deps == {"ok": "1.0.0"}


def test_extract_is_idempotent():
    raw = json.dumps(PACKAGE_JSON)
    assert extract_from_text(raw) == extract_from_text(raw)


def test_lockfile_nested_tree_is_flattened():
    deps = extract_lockfile_dependencies(LOCKFILE_V1)
    assert deps == {"express": "4.18.2", "accepts": "1.3.8", "left-pad": "1.3.0"}


def test_lockfile_v3_packages_map():
    lockfile = {
        "lockfileVersion": 3,
        "packages": {
            "": {"name": "demo-app", "version": "1.0.0"},
            "node_modules/express": {"version": "4.18.2"},
            "node_modules/express/node_modules/debug": {"version": "2.6.9"},
        },
    }
    deps = extract_lockfile_dependencies(lockfile)
    assert deps == {"express": "4.18.2", "debug": "2.6.9"}


def test_extract_from_zip_merges_all_manifests():
    content = _zip_bytes(
        {
            "app/package.json": json.dumps({"dependencies": {"react": "^18.2.0"}}),
            "app/server/PACKAGE.JSON": json.dumps({"dependencies": {"koa": "^2.14.0"}}),
            "app/package-lock.json": json.dumps(LOCKFILE_V1),
            "app/README.md": "# demo",
        }
    )
    deps = extract_from_zip(content)
    assert deps["react"] == "^18.2.0"
    assert deps["koa"] == "^2.14.0"
    assert deps["accepts"] == "1.3.8"


def test_extract_from_zip_without_manifest():
    content = _zip_bytes({"README.md": "# nothing here"})
    with pytest.raises(NoManifestFoundError):
        extract_from_zip(content)


def test_extract_from_zip_rejects_corrupt_archive():
    with pytest.raises(InvalidInputError, match="zip"):
        extract_from_zip(b"definitely not a zip")


def _patch_central_header(content, field_offset, value):
    """Overwrite a 2-byte field of the first central directory entry."""
    start = content.index(b"PK\x01\x02") + field_offset
    return content[:start] + struct.pack("<H", value) + content[start + 2 :]


def _corrupt_deflate_stream(content):
    local_header = 30 + len("package.json")
    return content[:local_header] + b"\xff" * 8 + content[local_header + 8 :]


@pytest.mark.parametrize(
    "damage",
    [
        # Encrypted flag: reading needs a password
        lambda content: _patch_central_header(content, 8, 0x1),
        # Unknown compression method
        lambda content: _patch_central_header(content, 10, 99),
        _corrupt_deflate_stream,
    ],
    ids=["encrypted", "unknown-compression", "corrupt-deflate"],
)
def test_extract_from_zip_rejects_unreadable_entries(damage):
    manifest = json.dumps({"dependencies": {"express": "^4.18.2", "left-pad": "1.3.0"}})
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("package.json", manifest)

    with pytest.raises(InvalidInputError, match="zip"):
        extract_from_zip(damage(buffer.getvalue()))


def test_extract_from_upload_by_file_name():
    manifest = UploadedFile("package.json", json.dumps(PACKAGE_JSON).encode())
    lockfile = UploadedFile("package-lock.json", json.dumps(LOCKFILE_V1).encode())

    assert extract_from_upload(manifest)["jest"] == "^29.0.0"
    assert extract_from_upload(lockfile)["accepts"] == "1.3.8"


def test_extract_from_upload_detects_zip_content_type():
    upload = UploadedFile(
        "upload.bin",
        _zip_bytes({"package.json": json.dumps({"dependencies": {"vue": "^3.4.0"}})}),
        content_type="application/zip",
    )
    assert extract_from_upload(upload) == {"vue": "^3.4.0"}


def test_extract_from_upload_rejects_other_files():
    with pytest.raises(UnsupportedFileTypeError, match="requirements.txt"):
        extract_from_upload(UploadedFile("requirements.txt", b"requests==2.31.0"))


def test_resolve_dependencies_prefers_raw_manifest():
    upload = UploadedFile("package.json", json.dumps({"dependencies": {"a": "1"}}).encode())
    deps = resolve_dependencies(upload=upload, raw_manifest={"dependencies": {"b": "2"}})
    assert deps == {"b": "2"}


def test_resolve_dependencies_without_input():
    assert resolve_dependencies() == {}


def test_get_project_name():
    assert get_project_name(json.dumps(PACKAGE_JSON)) == "demo-app"
    assert get_project_name({"dependencies": {}}) == "unknown"
