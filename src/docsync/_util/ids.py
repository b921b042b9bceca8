"""Block ID generation."""

from __future__ import annotations

import os


def generate_block_id() -> str:
    """Generate a random 16-character hex block ID."""
    return os.urandom(8).hex()
