"""AnyClaw bridge server."""

from anyclaw import __version__

__all__ = ["__version__"]
