"""
endurance_core package.

Holds process-wide helpers for the endurance tray runtime.
"""

__all__ = [
    "logger",
]
