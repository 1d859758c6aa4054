"""Client/server file synchronisation over a small TCP packet protocol."""

__version__ = "0.1.0"
__all__ = ["__version__"]