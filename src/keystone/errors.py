from __future__ import annotations


class KeystoneError(ValueError):
    pass


class FrameValidationError(KeystoneError):
    pass


class ControlPointError(KeystoneError):
    pass


class DegenerateGeometryError(KeystoneError):
    """No finite correction can be derived from the control points."""
