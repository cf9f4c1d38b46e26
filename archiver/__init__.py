"""Response Archiver.

Watches a Chromium browser over the DevTools protocol, captures selected
network responses and archives the binary artifacts (generated images) they
carry together with JSON metadata records.
"""

__version__ = "1.0.0"
