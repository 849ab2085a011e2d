"""State layer.

This package is the single source of truth for how push events and pull
snapshots are merged into the roster of current agent locations, and for the
process-wide tracking flag.
"""
