"""
Metadata Builder for ASTER
==========================

Every uploaded file gets the same metadata envelope before it is handed to a
format standardizer: filename, size, MIME type, extension, timestamps and a
standardization id that is unique per standardization call.
"""

import mimetypes
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    """Format a datetime as a UTC ISO-8601 string with millisecond precision."""
    if moment is None:
        moment = datetime.now(timezone.utc)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_standardization_id(prefix: str = "std") -> str:
    """
    Create a standardization id: millisecond timestamp plus a random suffix.

    Two calls never return the same id, even within the same millisecond.
    """
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:10]}"


def file_extension(name: str) -> str:
    """Lower-cased extension without the dot ("" when the name has none)."""
    suffix = Path(name).suffix
    return suffix[1:].lower() if suffix else ""


@dataclass(frozen=True)
class UploadedFile:
    """
    A file selected by the user, immutable once created.

    Attributes:
        name: Original filename (with extension)
        raw_payload: File bytes as read from disk or received over the wire
        size: Payload size in bytes
        mime_type: MIME type (guessed from the name when not given)
        extension: Lower-cased extension without the dot
        upload_date: When the file was selected
        id: Unique file id
    """
    name: str
    raw_payload: bytes
    size: int = 0
    mime_type: str = ""
    extension: str = ""
    upload_date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: f"file-{uuid.uuid4().hex[:12]}")

    def __post_init__(self):
        # frozen dataclass: derived fields are filled through object.__setattr__
        if not self.size:
            object.__setattr__(self, "size", len(self.raw_payload))
        if not self.extension:
            object.__setattr__(self, "extension", file_extension(self.name))
        if not self.mime_type:
            guessed, _ = mimetypes.guess_type(self.name)
            object.__setattr__(self, "mime_type", guessed or "application/octet-stream")

    @classmethod
    def from_bytes(
        cls,
        name: str,
        payload: Union[bytes, str],
        mime_type: str = "",
        upload_date: Optional[datetime] = None,
    ) -> "UploadedFile":
        """Wrap an in-memory payload (text is encoded as UTF-8)."""
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        kwargs: Dict[str, Any] = {"name": name, "raw_payload": payload, "mime_type": mime_type}
        if upload_date is not None:
            kwargs["upload_date"] = upload_date
        return cls(**kwargs)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "UploadedFile":
        """
        Read a file from disk.

        Raises:
            OSError: If the file cannot be read. Read failures are the only
                errors that escape standardization.
        """
        path = Path(path)
        payload = path.read_bytes()
        modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        return cls(name=path.name, raw_payload=payload, upload_date=modified)


@dataclass
class DocumentMetadata:
    """Metadata envelope shared by every standardized document."""
    filename: str
    file_type: str
    file_size: int
    extension: str
    upload_date: str
    conversion_date: str
    standardization_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "fileType": self.file_type,
            "fileSize": self.file_size,
            "extension": self.extension,
            "uploadDate": self.upload_date,
            "conversionDate": self.conversion_date,
            "standardizationId": self.standardization_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentMetadata":
        return cls(
            filename=data.get("filename", ""),
            file_type=data.get("fileType", ""),
            file_size=int(data.get("fileSize", 0) or 0),
            extension=data.get("extension", ""),
            upload_date=data.get("uploadDate", ""),
            conversion_date=data.get("conversionDate", ""),
            standardization_id=data.get("standardizationId", ""),
        )


def build_metadata(uploaded: UploadedFile, id_prefix: str = "std") -> DocumentMetadata:
    """
    Build the metadata envelope for one standardization call.

    Args:
        uploaded: The file being standardized
        id_prefix: Prefix of the generated standardization id (e.g. "std-csv")

    Returns:
        DocumentMetadata with a fresh conversion date and standardization id
    """
    return DocumentMetadata(
        filename=uploaded.name,
        file_type=uploaded.mime_type,
        file_size=uploaded.size,
        extension=uploaded.extension,
        upload_date=iso_timestamp(uploaded.upload_date),
        conversion_date=iso_timestamp(),
        standardization_id=new_standardization_id(id_prefix),
    )
