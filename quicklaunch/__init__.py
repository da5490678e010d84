"""quicklaunch - keyboard-driven desktop launcher."""

__version__ = "0.1.0"
