"""
Custom exceptions for the Viewfinder Service.

This module defines all custom exceptions used throughout the application
for better error handling and categorization.
"""

from __future__ import annotations


class ViewfinderError(Exception):
    """
    Base exception for all viewfinder errors.

    This is the parent class for all viewfinder service exceptions,
    allowing for broad exception handling when needed.
    """
    pass


class InvalidParameterError(ViewfinderError):
    """
    Raised when invalid parameters are provided to viewfinder operations.

    This includes:
    - Unknown pro parameter or camera mode names
    - Operations that need a concrete parameter but received NONE
    """
    pass


class ControlError(ViewfinderError):
    """
    Raised when the capture control port rejects a request.

    This typically occurs when:
    - The active sensor does not support the requested control
    - The camera backend is closed or not yet started

    Controller state is never rolled back when this is raised.
    """
    pass


class DecodeError(ViewfinderError):
    """
    Raised when source bytes cannot be turned into a pixel buffer.

    This can occur when:
    - The bytes are not a supported image format
    - The image is truncated or corrupt
    - The decoded image exceeds the configured pixel limit
    """
    pass


class ImageSourceError(ViewfinderError):
    """
    Raised when the image source port cannot read a reference.

    This typically occurs when:
    - The referenced file does not exist
    - The file cannot be opened for reading
    """
    pass
