"""UDP packet framing, protocol 01/02 headers and view models for linking SNES game sessions online."""

__version__ = "0.1.0"