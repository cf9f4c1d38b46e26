"""Archive persistence for captured artifacts.

Usage:
    from archiver.persistence import ArchiveStore

    store = ArchiveStore("/data/archive")
    store.load_index()
    await store.persist("42", {"prompt": "A cat"}, png_bytes)
"""

from .archive_store import (
    ArchiveStore,
    ArchivedIdIndex,
    sniff_image_format,
    date_dir,
    image_filename,
    sanitize_prompt,
    IMAGE_SIGNATURES,
)

__all__ = [
    "ArchiveStore",
    "ArchivedIdIndex",
    "sniff_image_format",
    "date_dir",
    "image_filename",
    "sanitize_prompt",
    "IMAGE_SIGNATURES",
]
