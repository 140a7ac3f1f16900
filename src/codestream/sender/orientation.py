"""
Frame Orientation
=================

Pure helpers for rotating captured frames so they arrive upright.

The rotation to apply depends only on the sensor mounting angle, the current
device rotation and which way the camera faces. It is recomputed whenever
the device rotates and applies to the next captured frame only.
"""

from enum import Enum

import cv2
import numpy as np


class Facing(str, Enum):
    """Camera facing direction."""
    
    BACK = "back"
    FRONT = "front"
    
    def toggled(self) -> "Facing":
        return Facing.FRONT if self is Facing.BACK else Facing.BACK


VALID_ROTATIONS = (0, 90, 180, 270)

_CV2_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def normalize_rotation(degrees: int) -> int:
    """
    Snap an angle to the nearest multiple of 90 in [0, 360).
    
    Args:
        degrees: Any angle in degrees (negative allowed)
        
    Returns:
        One of 0, 90, 180, 270
    """
    return (int(round(degrees / 90.0)) * 90) % 360


def compute_frame_rotation(
    sensor_orientation: int,
    device_rotation: int,
    facing: Facing,
) -> int:
    """
    Clockwise rotation that makes a captured frame upright.
    
    Front cameras are mirrored, so device rotation adds to the sensor
    angle instead of subtracting from it.
    
    Args:
        sensor_orientation: Sensor mounting angle in degrees
        device_rotation: Current display rotation in degrees
        facing: Camera facing
        
    Returns:
        Rotation in degrees, one of 0, 90, 180, 270
    """
    sensor = normalize_rotation(sensor_orientation)
    device = normalize_rotation(device_rotation)
    
    if facing is Facing.FRONT:
        return (sensor + device) % 360
    return (sensor - device + 360) % 360


def rotate_image(image: np.ndarray, degrees: int) -> np.ndarray:
    """
    Rotate an image clockwise by a multiple of 90 degrees.
    
    Returns the input unchanged for 0 degrees.
    """
    rotation = normalize_rotation(degrees)
    if rotation == 0:
        return image
    return cv2.rotate(image, _CV2_ROTATIONS[rotation])
