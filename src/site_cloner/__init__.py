"""site-cloner core library.

Mirrors a website into a directory that can be browsed offline: pages are
discovered breadth-first from a seed URL, assets are downloaded under size
limits, and intra-site references are rewritten to relative paths.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
