"""Audit sink for response evaluations (JSONL on disk, optional webhook).

Writes are fire-and-forget. A failing sink is logged and never surfaces to the chat
session.
"""

from __future__ import annotations
