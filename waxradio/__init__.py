"""WaxRadio client core: account lifecycle and preview-gated engagement."""

__version__ = "1.0.0"
