"""GitHub-facing sources for the adopter scan.

Everything here talks to GitHub through the `gh` CLI, so authentication and
host configuration follow whatever `gh auth status` reports.
"""

from __future__ import annotations

from adopters.sources.gh import GhClient, GhError

__all__ = ["GhClient", "GhError"]
