"""Reader for the Bunko library.

Page layout, navigation and reading progress for one open volume, served
under /reader.
"""

from .router import router

__all__ = ["router"]
