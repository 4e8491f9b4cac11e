"""Read-only snapshots of archive entities (session, scan, resource).

A snapshot is built per request from an archive source and never cached.
"""

from dataclasses import dataclass, field
from datetime import date, time


@dataclass(frozen=True)
class Resource:
    """A labelled file grouping under a scan."""

    label: str | None = None
    format: str | None = None
    content: str | None = None
    # Path of the resource catalog, if the archive tracks one
    catalog_path: str | None = None
    resource_id: str | None = None


@dataclass(eq=False)
class Scan:
    """An archive scan, presented as a DICOM series."""

    uid: str | None = None
    scan_id: str | None = None
    modality: str | None = None
    series_description: str | None = None
    resources: list[Resource] = field(default_factory=list)
    session: "ImagingSession | None" = field(default=None, repr=False)


@dataclass(eq=False)
class ImagingSession:
    """An archive imaging session, presented as a DICOM study."""

    id: str | None = None
    uid: str | None = None
    project: str | None = None
    subject_id: str | None = None
    label: str | None = None
    date: date | str | None = None
    time: time | str | None = None
    archive_path: str | None = None
    scans: list[Scan] = field(default_factory=list)

    def __post_init__(self):
        for scan in self.scans:
            scan.session = self

    @property
    def is_study(self) -> bool:
        """Only sessions carrying a UID are exposed as studies."""
        return bool(self.uid)
