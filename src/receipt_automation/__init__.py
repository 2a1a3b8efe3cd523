"""
Receipt automation: turn vision-model output for photographed receipts into
validated records and spreadsheet exports.
"""

__all__ = [
    "config",
    "logging",
    "paths",
]
