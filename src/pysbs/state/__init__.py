"""State/store layer.

This package is the single source of truth for how parsed SBS updates are
merged into per-aircraft state, aged out, and ordered for snapshots.
"""
