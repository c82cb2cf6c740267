"""Error taxonomy for the overlay alignment backend."""


class PlotMapError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(PlotMapError):
    """A structural precondition was violated (e.g. not exactly 4 corners)."""


class ResolutionError(PlotMapError):
    """An image reference could not be turned into a renderable URL."""


class PersistenceError(PlotMapError):
    """Loading or saving a project's map configuration failed."""
