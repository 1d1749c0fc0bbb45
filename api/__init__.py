"""Read-only HTTP interface over the SlideSync cache."""

__version__ = "0.1.0"

__all__ = ["__version__"]
