"""Built-in archivers."""

from .images import (
    ImageResponseArchiver,
    create_image_archiver_profile,
    image_id,
    looks_like_image,
    prompt_from_url,
)

__all__ = [
    'ImageResponseArchiver',
    'create_image_archiver_profile',
    'image_id',
    'looks_like_image',
    'prompt_from_url',
]
