"""Shared constants for sparklab."""

# Default config file name for auto-discovery
DEFAULT_CONFIG = "sparklab.yaml"

# Unified output directory -- single top-level directory for all sparklab outputs.
# Contains:
#   journal/   -- session-scoped JSONL provenance logs
#   runs/      -- per-run subdirectories with metrics.json
DEFAULT_OUTPUT_DIR = "./sparklab-output"

# Landing zone and job outputs for generated data
DEFAULT_DATA_ROOT = "./sparklab-data"
