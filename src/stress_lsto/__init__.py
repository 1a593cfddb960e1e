"""Level-set stress minimisation of plane structures."""

__version__ = "0.1.0"
