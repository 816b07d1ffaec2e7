"""
ccvm.storage - Configuration directory module

Layout of the configuration directory, initialization, and reset.
"""

from ccvm.storage.layout import ConfigLayout, initialize, reset

__all__ = ["ConfigLayout", "initialize", "reset"]
