"""Image archive storage for the response archiver.

This module persists captured artifacts into a date-sharded directory tree:

    <root>/images/<Y>/<M>/<D>/<id>-<sanitized prompt>.<ext>
    <root>/database/<Y>/<M>/<D>/<id>.json

Writes are deduplicated by artifact id through an in-memory index that is
rebuilt from the ``database`` tree at startup.
"""

import json
import logging
import os
import re
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Set, Tuple, Union

from ..errors import DuplicateIdError, EmptyPayloadError, UnknownFormatError
from ..models.capture import ArchiveRecord, ArchivedImage, RecordDetails

logger = logging.getLogger(__name__)

IMAGES_DIR = "images"
DATABASE_DIR = "database"
RECORD_SUFFIX = ".json"

MAX_FILENAME_LENGTH = 240
TRUNCATION_MARKER = "…"

# (extension, offset, magic bytes); every entry must match for a format
IMAGE_SIGNATURES: Tuple[Tuple[str, Tuple[Tuple[int, bytes], ...]], ...] = (
    ("bmp", ((0, b"BM"),)),
    ("jpg", ((0, b"\xff\xd8\xff"),)),
    ("gif", ((0, b"GIF8"),)),
    ("png", ((0, b"\x89PNG\r\n\x1a\n"),)),
    ("webp", ((0, b"RIFF"), (8, b"WEBP"))),
)

_SEPARATOR_SEQUENCES = (". ", ", ", ".", ",")
_DISALLOWED_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sniff_image_format(data: bytes) -> str:
    """Identify an image format from its leading bytes.

    Args:
        data: Artifact payload

    Returns:
        File extension for the detected format

    Raises:
        UnknownFormatError: If no known signature matches
    """
    for ext, checks in IMAGE_SIGNATURES:
        if all(data[offset:offset + len(magic)] == magic for offset, magic in checks):
            return ext
    raise UnknownFormatError(bytes(data[:8]))


def date_dir(unix_time: Union[int, float]) -> str:
    """Shard directory for a timestamp, e.g. ``2024/3/5`` (local time, no padding)."""
    date = datetime.fromtimestamp(unix_time)
    return f"{date.year}/{date.month}/{date.day}"


def sanitize_prompt(prompt: str) -> str:
    """Reduce a prompt to characters that are safe in a filename."""
    for sequence in _SEPARATOR_SEQUENCES:
        prompt = prompt.replace(sequence, "_")
    prompt = prompt.replace(" ", "-")
    prompt = _DISALLOWED_FILENAME_CHARS.sub("", prompt)
    if prompt.endswith(("_", "-")):
        prompt = prompt[:-1]
    return prompt


def image_filename(artifact_id: str, prompt: str) -> str:
    """Build the artifact filename (without extension).

    Args:
        artifact_id: Artifact id
        prompt: Prompt text, sanitized here

    Returns:
        ``<id>-<sanitized prompt>``, truncated to 240 characters plus a
        marker when longer
    """
    filename = f"{artifact_id}-{sanitize_prompt(prompt)}"
    if len(filename) > MAX_FILENAME_LENGTH:
        return filename[:MAX_FILENAME_LENGTH] + TRUNCATION_MARKER
    return filename


class ArchivedIdIndex:
    """Set of artifact ids known to have a metadata record on disk."""

    def __init__(self, ids: Optional[Set[str]] = None):
        self._ids: Set[str] = set(ids or ())

    def __contains__(self, artifact_id: object) -> bool:
        return str(artifact_id) in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def add(self, artifact_id: str) -> None:
        self._ids.add(str(artifact_id))

    def discard(self, artifact_id: str) -> None:
        self._ids.discard(str(artifact_id))

    def rebuild(self, database_dir: Path) -> int:
        """Replace the index with the ids found under a database directory.

        Every ``*.json`` file found recursively contributes its base name.
        Scan failures are tolerated: the index keeps whatever was collected.

        Args:
            database_dir: Root of the metadata record tree

        Returns:
            Number of ids in the index
        """
        self._ids.clear()
        dirs_to_scan = [Path(database_dir)]
        while dirs_to_scan:
            path = dirs_to_scan.pop()
            try:
                with os.scandir(path) as entries:
                    for entry in entries:
                        if entry.is_dir():
                            dirs_to_scan.append(Path(entry.path))
                        elif entry.is_file() and entry.name.endswith(RECORD_SUFFIX):
                            self._ids.add(entry.name[:-len(RECORD_SUFFIX)])
            except OSError as e:
                logger.debug(f"Skipping unreadable archive directory {path}: {e}")
        return len(self._ids)


class ArchiveStore:
    """Local filesystem archive for captured images and their records."""

    def __init__(
        self,
        archive_root: Union[str, Path],
        index: Optional[ArchivedIdIndex] = None,
        write_records: bool = True,
    ):
        """Initialize the archive store.

        Args:
            archive_root: Root directory holding ``images`` and ``database``
            index: Archived id index (a fresh empty one by default)
            write_records: Write metadata records and update the index. When
                False only the artifact files are written, so re-running will
                not treat them as duplicates.
        """
        self.archive_root = Path(archive_root)
        self.index = index if index is not None else ArchivedIdIndex()
        self.write_records = write_records

    @property
    def images_dir(self) -> Path:
        return self.archive_root / IMAGES_DIR

    @property
    def database_dir(self) -> Path:
        return self.archive_root / DATABASE_DIR

    def load_index(self) -> int:
        """Rebuild the archived id index from the database tree.

        Returns:
            Number of archived ids found
        """
        count = self.index.rebuild(self.database_dir)
        logger.debug(f"Archive index rebuilt from {self.database_dir}: {count} ids")
        return count

    def is_archived(self, artifact_id: Optional[str]) -> bool:
        """Check whether an artifact id is already archived."""
        return artifact_id is not None and artifact_id in self.index

    def _check_duplicate(self, artifact_id: Optional[str]) -> None:
        if self.is_archived(artifact_id):
            raise DuplicateIdError(str(artifact_id))

    async def persist(
        self,
        artifact_id: Optional[str],
        details: RecordDetails,
        data: bytes,
        write_record: Optional[bool] = None,
    ) -> Optional[ArchivedImage]:
        """Archive an artifact with its metadata record.

        Writing never suspends, so concurrent captures cannot interleave
        between the duplicate check and the index update.

        Args:
            artifact_id: Artifact id; a random one is generated when empty
            details: Record fields (``prompt``, ``unixTime`` and any extras)
            data: Artifact payload
            write_record: Override the store's ``write_records`` setting

        Returns:
            ArchivedImage, or None if the id was already archived

        Raises:
            EmptyPayloadError: If the payload is empty
            UnknownFormatError: If the payload is not a known image format
        """
        if artifact_id is not None:
            artifact_id = str(artifact_id)
        try:
            self._check_duplicate(artifact_id)
        except DuplicateIdError as e:
            logger.debug(str(e))
            return None

        if not artifact_id:
            artifact_id = uuid.uuid4().hex
            logger.debug(f"Missing ID, generated one: {artifact_id}")

        if isinstance(details, ArchiveRecord):
            fields = details.model_dump(by_alias=True, exclude_none=True)
        elif details:
            fields = dict(details)
        else:
            logger.debug(f"No details for: {artifact_id}")
            fields = {}

        if not data:
            raise EmptyPayloadError(artifact_id)

        fields["id"] = artifact_id
        if fields.get("unixTime") is None:
            fields["unixTime"] = int(time.time())
        record = ArchiveRecord.model_validate(fields)

        logger.info(f"Archiving: {record.id} - {record.prompt}")
        image_format = sniff_image_format(data)

        shard = date_dir(record.unix_time)
        image_relpath = f"{IMAGES_DIR}/{shard}/{image_filename(record.id, record.prompt)}.{image_format}"
        image_path = self.archive_root / image_relpath
        image_path.parent.mkdir(parents=True, exist_ok=True)
        image_path.write_bytes(data)
        record.image_file = image_relpath

        if write_record is None:
            write_record = self.write_records

        record_path = None
        if write_record:
            record_path = self.database_dir / shard / f"{record.id}{RECORD_SUFFIX}"
            record_path.parent.mkdir(parents=True, exist_ok=True)
            with open(record_path, 'w', encoding='utf-8') as f:
                json.dump(record.to_json_dict(), f, indent=2, ensure_ascii=False)
            self.index.add(record.id)

        return ArchivedImage(
            record=record,
            image_format=image_format,
            image_path=image_path,
            record_path=record_path,
        )

    def __repr__(self) -> str:
        return f"ArchiveStore(root={self.archive_root}, archived={len(self.index)})"
