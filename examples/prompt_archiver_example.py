#!/usr/bin/env python3
"""
Custom archiver example for the response archiver.

This example shows how to build an archiver profile of your own. It
registers interception for the pages of an image generator, reads the JSON
job listings those pages load to learn the prompt of every image, and then
archives the images with their real prompts instead of the URL name.

Run it with a settings file (archiver.yaml) next to it:

    cdp_port: 12345
    chromium_path: google-chrome
    archive_path: /home/me/archive
"""

import asyncio
import base64
import json
import logging
from pathlib import Path
import sys
from typing import Dict

# Add the parent directory to Python path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from archiver.archivers.images import ImageResponseArchiver
from archiver.cli import ArchiverProfile, ArchiverRunner, load_settings
from archiver.errors import ArchiverError, ConfigurationError
from archiver.models.capture import CaptureRule, CapturedResponse, TargetKind
from archiver.utils.log_setup import configure_logging

logger = logging.getLogger("prompt_archiver")

SITE = "https://images.example.com/*"
JOBS_API = "*/api/jobs*"

# Image URL -> prompt, filled from the job listings
prompts: Dict[str, str] = {}


def target_predicate(kind, url, register_interception):
    """Intercept the job listing requests of the generator's pages."""
    if kind == TargetKind.PAGE and url.startswith(SITE[:-1]):
        # Must be called before the predicate returns
        register_interception([JOBS_API])


async def read_job_listing(event, cdp_session):
    """Remember the prompt of every image in a paused job listing."""
    if not event.is_response_stage or event.response_status_code != 200:
        return None
    try:
        result = await cdp_session.send("Fetch.getResponseBody", {"requestId": event.request_id})
    except ArchiverError as e:
        logger.debug(f"Job listing body not available: {e}")
        return None

    body = result.get("body", "")
    if result.get("base64Encoded"):
        body = base64.b64decode(body).decode("utf-8", errors="replace")
    try:
        jobs = json.loads(body)
    except json.JSONDecodeError:
        return None

    for job in jobs.get("jobs", []):
        for image_url in job.get("image_urls", []):
            prompts[image_url] = job.get("prompt")
    logger.info(f"Prompts known: {len(prompts)}")
    # Let the engine continue the request
    return None


class PromptImageArchiver(ImageResponseArchiver):
    """Image archiver using the prompts read from the job listings."""

    def build_details(self, response: CapturedResponse):
        details = super().build_details(response)
        if response.url in prompts:
            details["prompt"] = prompts[response.url]
        return details


def create_prompt_archiver_profile() -> ArchiverProfile:
    return ArchiverProfile(
        name="prompt-archiver",
        version="0.1.0",
        handler_factory=PromptImageArchiver,
        initial_url="https://images.example.com/",
        capture_rules=[CaptureRule.model_validate({
            "from": SITE,
            "intercept": ["https://cdn.images.example.com/*.png", "https://cdn.images.example.com/*.webp"],
        })],
        target_predicate=target_predicate,
        raw_pause_handler=read_job_listing,
    )


async def main():
    """Run the prompt archiver until the browser is closed."""
    configure_logging()
    try:
        settings = load_settings(Path("archiver.yaml"))
    except ConfigurationError as e:
        print(f"❌ {e}")
        return 3

    runner = ArchiverRunner(create_prompt_archiver_profile(), settings)
    exit_code = await runner.run()
    return exit_code.value


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
