"""Shared utility helpers."""

from prerender.utils.paths import write_json_atomically, write_text_atomically
from prerender.utils.time_utils import now_utc

__all__ = [
    "write_json_atomically",
    "write_text_atomically",
    "now_utc",
]
