"""crev - signed, append-only code review proofs."""

from __future__ import annotations

__version__ = "0.1.0"
