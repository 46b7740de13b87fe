"""Client-side tracking of long-running backend jobs."""

__all__ = ["__version__"]
__version__ = "0.1.0"
