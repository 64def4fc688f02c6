"""Evidence ↔ specification auto-linking."""

from koso.links.auto_linker import AutoLinker

__all__ = ["AutoLinker"]
