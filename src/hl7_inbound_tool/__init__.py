# src/hl7_inbound_tool/__init__.py
"""
hl7_inbound_tool: inbound HL7 v2 queue processing.

This package provides:
- An ER7 parser with a lossless segment/field model and a forward cursor.
- Reference resolution of message identifiers against external directories.
- A queue processor that turns ORU messages into an encounter plus
  observations (or concept proposals) and archives or errors each entry.
- In-memory collaborators and a CLI for manual replay.
"""

from __future__ import annotations

__version__ = "0.1.0"
__all__ = [
    "__version__",
]
