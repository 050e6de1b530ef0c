"""
Optional inference backends for det_kit.

Backends are kept in a separate module so decoding and NMS stay lightweight
and can be used without installing inference runtimes.
"""

from __future__ import annotations

__all__ = []
