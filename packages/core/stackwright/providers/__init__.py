"""Built-in resource providers."""

from __future__ import annotations

from stackwright.providers.local import LocalProvider

__all__ = ["LocalProvider"]
