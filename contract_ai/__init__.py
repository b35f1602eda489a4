"""contract-ai: classification, extraction and reconciliation of real-estate purchase contracts."""

__version__ = "0.1.0"
