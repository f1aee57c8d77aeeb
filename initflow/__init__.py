"""initiative-flow: tiered initiative planning, gates and work items."""

__version__ = "0.1.0"
