"""Shared test fixtures and configuration for response archiver tests."""

import sys
from pathlib import Path

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from archiver.models.capture import CaptureRule, TargetInfo
from archiver.persistence.archive_store import ArchiveStore

from tests.helpers import FakeCdpConnection


@pytest.fixture
def fake_connection():
    """Fake browser connection."""
    return FakeCdpConnection()


@pytest.fixture
def image_rule():
    """Capture rule for PNG images loaded by example.com pages."""
    return CaptureRule.model_validate({
        "from": "https://example.com/*",
        "intercept": ["*.png"],
    })


@pytest.fixture
def raw_capture_rule():
    """Capture rule that also enables the observation channel."""
    return CaptureRule.model_validate({
        "from": "https://example.com/*",
        "intercept": ["*.png"],
        "enable_raw_capture": True,
    })


@pytest.fixture
def page_target():
    return TargetInfo(target_id="target-1", type="page", url="https://example.com/gallery")


@pytest.fixture
def archive_store(tmp_path):
    """Archive store rooted in a temporary directory."""
    return ArchiveStore(tmp_path / "archive")
