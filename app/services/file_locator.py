"""Locate the files behind an archive resource.

Two strategies, in order:

1. Catalog resolution, when the resource has a catalog. The catalog is
   authoritative: if it cannot be read, the resource yields no files and
   the directory tree is *not* consulted.
2. Directory walk under the conventional archive layout, when the resource
   has no catalog at all.
"""

import logging
import os
import xml.etree.ElementTree as ET
from pathlib import Path

from app.models.entities import ImagingSession, Resource, Scan
from app.services.errors import CatalogResolutionError

logger = logging.getLogger(__name__)

_DICOM_DESCRIPTORS = ("dicom", "secondary")


def matches_dicom_descriptor(value: str | None) -> bool:
    """Case-insensitive substring match on "dicom" or "secondary"."""
    if value is None:
        return False
    normalized = value.strip().lower()
    if not normalized:
        return False
    return any(token in normalized for token in _DICOM_DESCRIPTORS)


def is_dicom_resource(resource: Resource) -> bool:
    """Return True if label, format or content marks the resource as DICOM."""
    return (
        matches_dicom_descriptor(resource.label)
        or matches_dicom_descriptor(resource.format)
        or matches_dicom_descriptor(resource.content)
    )


def join_paths(first: str, *others: str | None) -> str:
    """Join path parts, skipping empty ones and treating every later part as relative."""
    path = Path(first)
    for part in others:
        if part:
            relative = part.lstrip("/\\")
            if relative:
                path = path / relative
    return str(path)


def build_fallback_archive_path(
    base_archive: str | None, project_id: str | None, session_label: str | None
) -> str | None:
    """Legacy ``{base}/{project}/arc001/{label}`` session directory."""
    if not base_archive or not project_id or not session_label:
        return None
    normalized = base_archive.rstrip("/\\") or base_archive
    return join_paths(normalized, project_id, "arc001", session_label)


def _is_readable_file(path: Path) -> bool:
    try:
        return path.is_file() and os.access(path, os.R_OK)
    except OSError:
        return False


class FileLocator:
    """Resolve resource groupings to candidate DICOM file paths."""

    def __init__(self, archive_root: Path | str):
        self.archive_root = Path(archive_root)

    def resolve_files(self, resource: Resource, scan: Scan) -> list[Path]:
        """
        Return candidate files for a resource, deduplicated, in discovery order.

        Raises:
            CatalogResolutionError: The resource has a catalog that cannot be resolved
        """
        session = scan.session
        found: dict[Path, None] = {}

        if resource.catalog_path:
            paths = self._resolve_catalog(resource, session)
        else:
            root = self.resource_directory(resource, scan)
            paths = self._walk(Path(root)) if root else []

        for path in paths:
            found.setdefault(_canonical(path), None)
        return list(found)

    def session_directory(self, session: ImagingSession) -> str | None:
        """Session archive directory, reported or computed from the archive layout."""
        if session.archive_path:
            return session.archive_path
        return build_fallback_archive_path(
            str(self.archive_root), session.project, session.label
        )

    def resource_directory(self, resource: Resource, scan: Scan) -> str | None:
        """``{session dir}/SCANS/{scan id}/{resource label}`` for the fallback walk."""
        if scan.session is None:
            return None
        session_dir = self.session_directory(scan.session)
        if not session_dir:
            logger.debug(f"No archive directory for scan {scan.scan_id}")
            return None
        return join_paths(session_dir, "SCANS", scan.scan_id, resource.label)

    def _resolve_catalog(self, resource: Resource, session: ImagingSession | None) -> list[Path]:
        catalog = Path(resource.catalog_path)
        if not catalog.is_absolute():
            session_dir = self.session_directory(session) if session is not None else None
            if not session_dir:
                raise CatalogResolutionError(
                    f"Cannot locate catalog {catalog} for resource {resource.resource_id}: "
                    f"no session archive directory"
                )
            catalog = Path(session_dir) / catalog

        try:
            tree = ET.parse(catalog)
        except (OSError, ET.ParseError) as e:
            raise CatalogResolutionError(f"Cannot read catalog {catalog}: {e}") from e

        catalog_dir = catalog.parent
        files = []
        for element in tree.getroot().iter():
            if _local_name(element.tag) != "entry":
                continue
            uri = element.get("URI") or element.get("uri")
            if not uri:
                continue
            path = Path(uri)
            if not path.is_absolute():
                path = catalog_dir / path
            if _is_readable_file(path):
                files.append(path)
            else:
                logger.debug(f"Catalog entry {uri} in {catalog} is not a readable file")

        project = session.project if session is not None else None
        logger.debug(f"Catalog {catalog} (project {project}) resolved to {len(files)} files")
        return files

    def _walk(self, root: Path) -> list[Path]:
        if not root.exists():
            logger.debug(f"Resource directory {root} does not exist")
            return []
        if root.is_file():
            return [root] if _is_readable_file(root) else []

        files = []
        visited: set[str] = set()

        def on_error(error: OSError):
            logger.debug(f"Skipping unreadable entry: {error}")

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error, followlinks=True):
            real = os.path.realpath(dirpath)
            if real in visited:
                # symlink cycle
                dirnames[:] = []
                continue
            visited.add(real)
            dirnames.sort()
            for name in sorted(filenames):
                path = Path(dirpath) / name
                if _is_readable_file(path):
                    files.append(path)
        return files


def _canonical(path: Path) -> Path:
    try:
        return path.resolve()
    except OSError:
        return path.absolute()


def _local_name(tag) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1].rsplit(":", 1)[-1]
