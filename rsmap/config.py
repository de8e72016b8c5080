"""Default locations and thresholds for rsmap runs."""

from __future__ import annotations

import os

# Output directory (relative to the project root unless absolute)
DEFAULT_OUTPUT_DIR = os.environ.get("RSMAP_OUTPUT_DIR", ".codebase-index")

INDEX_FILE = "index.json"
ANNOTATIONS_FILE = "annotations.toml"
CACHE_FILE = "cache.json"

# Appended to an unreadable annotations file when it is moved aside
CORRUPT_SUFFIX = ".corrupt"

# Minimum number of distinct modules a type must appear in to be a hotspot
HOTSPOT_THRESHOLD = 3
