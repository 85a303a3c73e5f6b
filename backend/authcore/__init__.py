"""Fortalis authentication core.

The package is imported through the ``backend`` namespace
(``backend.authcore.app``, ``backend.authcore.db``).
"""

from __future__ import annotations

__all__: list[str] = []
