"""keygraph - deterministic relationship discovery over customer schemas."""

__version__ = "0.1.0"
