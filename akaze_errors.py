"""Exceptions raised by the AKAZE pipeline
"""


class AKAZEError(Exception):
    """Base class for all AKAZE errors
    """


class InvalidParameter(AKAZEError, ValueError):
    """Bad configuration, rejected before any computation starts
    """


class DegenerateInput(AKAZEError):
    """Input image that cannot seed a scale space at all (empty or not 2-D)
    """
