import os
import sys

from setuptools import setup

# Don't import posthog_core module here, since deps may not be installed
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "posthog_core"))
from version import VERSION  # noqa: E402

long_description = """
posthog-core is a thread-safe analytics and feature flag client core:
an in-memory event queue with batched background delivery, identity and
super properties, and a locally cached feature flag store.

This package requires Python 3.9 or higher.
"""

# Everything else is configured in pyproject.toml
setup(
    version=VERSION,
    long_description=long_description,
    long_description_content_type="text/plain",
)
