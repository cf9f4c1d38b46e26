"""Generic image archiver.

Archives every successful image response selected by the capture rules in
the settings file. Images are identified by a hash of their URL, so the same
image is archived once no matter how often it is loaded.
"""

import hashlib
import logging
import time
from pathlib import PurePosixPath
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlparse

from .. import __version__
from ..errors import ArchiveError, ArchiverError
from ..models.capture import ArchivedImage, CapturedResponse
from ..cli.runner import ArchiverContext, ArchiverProfile

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".bmp", ".jpg", ".jpeg", ".gif", ".png", ".webp")


def image_id(url: str) -> str:
    """Artifact id for an image URL: the first 16 hex digits of its SHA-256."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]


def prompt_from_url(url: str) -> Optional[str]:
    """Last URL path segment without its extension, or None."""
    segment = PurePosixPath(unquote(urlparse(url).path)).name
    stem = segment.rsplit(".", 1)[0] if "." in segment else segment
    return stem or None


def looks_like_image(response: CapturedResponse) -> bool:
    """Check the content type, falling back to the URL extension."""
    content_type = response.response.content_type if response.response else None
    if content_type:
        return content_type.split(";", 1)[0].strip().lower().startswith("image/")
    return urlparse(response.url).path.lower().endswith(IMAGE_EXTENSIONS)


class ImageResponseArchiver:
    """Response handler archiving captured images."""

    def __init__(self, context: ArchiverContext):
        self.context = context
        self.archived_count = 0
        self.skipped_count = 0
        self.failed_count = 0

    async def __call__(self, response: CapturedResponse) -> Optional[ArchivedImage]:
        if not response.is_successful or not looks_like_image(response):
            self.skipped_count += 1
            return None

        artifact_id = image_id(response.url)
        if self.context.store.is_archived(artifact_id):
            logger.debug(f"Already archived: {artifact_id} ({response.url})")
            return None

        try:
            data = await self.context.fetch_body(response)
            result = await self.context.archive(artifact_id, self.build_details(response), data)
        except ArchiveError as e:
            self.failed_count += 1
            logger.warning(f"Not archiving {response.url}: {e}")
            return None
        except ArchiverError as e:
            # Body no longer available, e.g. the target navigated away
            self.failed_count += 1
            logger.debug(f"Failed to fetch body of {response.url}: {e}")
            return None

        if result is not None:
            self.archived_count += 1
        return result

    def build_details(self, response: CapturedResponse) -> Dict[str, Any]:
        details: Dict[str, Any] = {
            "prompt": prompt_from_url(response.url),
            "unixTime": int(time.time()),
            "url": response.url,
            "initiator": response.initiator,
        }
        if response.response is not None and response.response.content_type:
            details["contentType"] = response.response.content_type
        return details

    def get_stats(self) -> Dict[str, int]:
        return {
            'archived': self.archived_count,
            'skipped': self.skipped_count,
            'failed': self.failed_count,
        }


def create_image_archiver_profile(name: str = "archiver") -> ArchiverProfile:
    """Profile of the generic image archiver; capture rules come from the settings."""
    return ArchiverProfile(
        name=name,
        version=__version__,
        handler_factory=ImageResponseArchiver,
    )
