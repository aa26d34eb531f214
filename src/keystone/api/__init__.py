from keystone.api.modifier import PerspectiveCorrection, PerspectiveModifier

__all__ = [
    "PerspectiveCorrection",
    "PerspectiveModifier",
]
