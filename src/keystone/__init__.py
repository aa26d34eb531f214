from keystone import frame
from keystone.api import PerspectiveCorrection, PerspectiveModifier
from keystone.core.angles import AngleBundle, Topology, calculate_angles
from keystone.frame import CameraFrame, load_camera_frame, parse_camera_frame

__all__ = [
    "frame",
    "AngleBundle",
    "CameraFrame",
    "PerspectiveCorrection",
    "PerspectiveModifier",
    "Topology",
    "calculate_angles",
    "load_camera_frame",
    "parse_camera_frame",
]
