"""State/store layer.

This package is the single source of truth for how the initial read,
change-feed events and local write-backs are merged into the replica of
the current identity's subscription record.
"""
