"""npm manifest and lockfile dependency extraction."""

from __future__ import annotations

import io
import json
import posixpath
import zipfile
import zlib
from typing import Any, NamedTuple

from repo_health_guard.errors import (
    InvalidInputError,
    NoManifestFoundError,
    UnsupportedFileTypeError,
)

MANIFEST_NAME = "package.json"
LOCKFILE_NAME = "package-lock.json"

# Encrypted entries raise RuntimeError, unknown compression NotImplementedError
UNREADABLE_ZIP_ERRORS = (
    zipfile.BadZipFile,
    zipfile.LargeZipFile,
    RuntimeError,
    NotImplementedError,
    zlib.error,
    EOFError,
)


class UploadedFile(NamedTuple):
    """A file handed over by the HTTP layer (multipart upload)."""

    filename: str
    content: bytes
    content_type: str | None = None


def parse_manifest(raw: str | bytes | dict[str, Any]) -> dict[str, Any]:
    """Decode manifest JSON, requiring a non-null, non-array object at the top level.

    Raises:
        InvalidInputError: If the text is not JSON or not a JSON object.
    """
    if isinstance(raw, dict):
        return raw
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        parsed = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidInputError(
            "Invalid JSON format. Must be a non-null object."
        ) from e
    if not isinstance(parsed, dict):
        raise InvalidInputError("Invalid JSON format. Must be a non-null object.")
    return parsed


def _add_string_entries(target: dict[str, str], section: Any) -> None:
    if not isinstance(section, dict):
        return
    for name, version in section.items():
        if isinstance(version, str):
            target[name] = version


def extract_dependencies(manifest: dict[str, Any]) -> dict[str, str]:
    """Merge ``dependencies`` and ``devDependencies`` of a package.json.

    Dev entries are applied last, so on a name collision the dev range wins.
    """
    deps: dict[str, str] = {}
    _add_string_entries(deps, manifest.get("dependencies"))
    _add_string_entries(deps, manifest.get("devDependencies"))
    return deps


def extract_lockfile_dependencies(lockfile: dict[str, Any]) -> dict[str, str]:
    """Flatten a package-lock.json into name -> resolved version.

    The legacy nested ``dependencies`` tree (lockfile v1/v2) is walked
    recursively. When it is absent, the v3 ``packages`` map is used instead.
    """
    deps: dict[str, str] = {}

    def walk(packages: Any) -> None:
        if not isinstance(packages, dict):
            return
        for name, info in packages.items():
            if not isinstance(info, dict):
                continue
            version = info.get("version")
            if not isinstance(version, str):
                continue
            deps[name] = version
            walk(info.get("dependencies"))

    if isinstance(lockfile.get("dependencies"), dict):
        walk(lockfile["dependencies"])
        return deps

    packages = lockfile.get("packages")
    if isinstance(packages, dict):
        for path, info in packages.items():
            # "" is the root project itself
            if not path or not isinstance(info, dict):
                continue
            version = info.get("version")
            if not isinstance(version, str):
                continue
            name = info.get("name") or path.rsplit("node_modules/", 1)[-1]
            deps[name] = version

    return deps


def extract_from_text(raw: str | bytes | dict[str, Any], is_lockfile: bool = False) -> dict[str, str]:
    """Parse manifest text and extract its dependency map."""
    parsed = parse_manifest(raw)
    if is_lockfile:
        return extract_lockfile_dependencies(parsed)
    return extract_dependencies(parsed)


def _is_zip(upload: UploadedFile) -> bool:
    return upload.content_type == "application/zip" or upload.filename.lower().endswith(
        ".zip"
    )


def extract_from_zip(content: bytes) -> dict[str, str]:
    """Extract and merge dependencies of every manifest inside a zip archive.

    Raises:
        NoManifestFoundError: If the archive holds no package.json or
            package-lock.json.
        InvalidInputError: If the archive or one of its manifests is unreadable.
    """
    deps: dict[str, str] = {}
    found_manifest = False

    try:
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                base_name = posixpath.basename(info.filename).lower()
                if base_name not in (MANIFEST_NAME, LOCKFILE_NAME):
                    continue
                found_manifest = True
                text = archive.read(info)
                deps.update(
                    extract_from_text(text, is_lockfile=base_name == LOCKFILE_NAME)
                )
    except UNREADABLE_ZIP_ERRORS as e:
        raise InvalidInputError(
            "Failed to read or parse the uploaded zip folder."
        ) from e

    if not found_manifest:
        raise NoManifestFoundError()
    return deps


def extract_from_upload(upload: UploadedFile) -> dict[str, str]:
    """Extract dependencies from an uploaded zip, package.json or package-lock.json.

    Raises:
        UnsupportedFileTypeError: For any other file name.
    """
    if _is_zip(upload):
        return extract_from_zip(upload.content)

    filename = upload.filename
    if filename.endswith(LOCKFILE_NAME):
        return extract_from_text(upload.content, is_lockfile=True)
    if filename.endswith(MANIFEST_NAME):
        return extract_from_text(upload.content)

    raise UnsupportedFileTypeError(filename)


def resolve_dependencies(
    upload: UploadedFile | None = None,
    raw_manifest: str | bytes | dict[str, Any] | None = None,
) -> dict[str, str]:
    """Pick the dependency source for an analysis request.

    A raw manifest takes priority over an uploaded file; with neither, the map
    is empty.
    """
    if raw_manifest:
        return extract_from_text(raw_manifest)
    if upload is not None:
        return extract_from_upload(upload)
    return {}


def get_project_name(raw_manifest: str | bytes | dict[str, Any]) -> str:
    """Return the manifest ``name`` field, or ``"unknown"``."""
    name = parse_manifest(raw_manifest).get("name")
    return name if isinstance(name, str) and name else "unknown"
