"""Request parsing and value normalization helpers."""
