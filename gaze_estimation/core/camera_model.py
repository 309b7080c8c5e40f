"""Pinhole camera model with extrinsic rotation for gaze estimation."""

from typing import Any

import numpy as np
from numpydantic import NDArray, Shape
from pydantic import BaseModel, Field
from scipy.spatial.transform import Rotation


class PinholeCameraModel(BaseModel):
    """
    Pinhole camera with position, orientation, pixel pitch and focal length.

    Orientation is stored as angles only. The rotation matrix is rebuilt from
    the current angles on every call, so it always reflects the last setter.

    Conventions:
    - Camera looks along its local +Z axis
    - rotation_matrix() maps camera-frame vectors into the world frame
    - Composition is Rx(angle_x) @ Ry(angle_y) @ Rz(angle_z) (intrinsic "XYZ")
    """

    model_config = {"arbitrary_types_allowed": True}

    principal_point_x: float
    principal_point_y: float
    pixel_size_x: float = Field(gt=0)
    pixel_size_y: float = Field(gt=0)
    focal_length: float = Field(gt=0)
    position: NDArray[Shape["3 xyz"], float] = Field(default_factory=lambda: np.zeros(3))
    angle_x: float = 0.0
    angle_y: float = 0.0
    angle_z: float = 0.0

    def camera_angle_y(self) -> float:
        return self.angle_y

    def camera_angle_z(self) -> float:
        return self.angle_z

    def set_camera_angle_y(self, angle: float) -> None:
        self.angle_y = float(angle)

    def set_camera_angle_z(self, angle: float) -> None:
        self.angle_z = float(angle)

    def set_camera_angles(self, angle_y: float, angle_z: float, angle_x: float = 0.0) -> None:
        """Set all orientation angles (radians) at once."""
        self.angle_y = float(angle_y)
        self.angle_z = float(angle_z)
        self.angle_x = float(angle_x)

    def rotation_matrix(self) -> np.ndarray:
        """(3, 3) camera-to-world rotation derived from the current angles."""
        return Rotation.from_euler(
            "XYZ", [self.angle_x, self.angle_y, self.angle_z]
        ).as_matrix()

    def world_to_camera(self, point_world: np.ndarray) -> np.ndarray:
        """Transform (3,) or (N, 3) world points into the camera frame."""
        return (np.asarray(point_world, dtype=np.float64) - self.position) @ self.rotation_matrix()

    def project(
        self,
        point_world: NDArray[Shape["*, 3"], np.floating[Any]]
    ) -> NDArray[Shape["*, 2"], np.floating[Any]]:
        """
        Project world point(s) to pixel coordinates.

        Args:
            point_world: (3,) or (N, 3) world points

        Returns:
            (2,) or (N, 2) pixel coordinates
        """
        point_cam = np.atleast_2d(self.world_to_camera(point_world))

        x_norm = point_cam[:, 0] / point_cam[:, 2]
        y_norm = point_cam[:, 1] / point_cam[:, 2]

        u = self.principal_point_x + self.focal_length * x_norm / self.pixel_size_x
        v = self.principal_point_y + self.focal_length * y_norm / self.pixel_size_y

        result = np.stack(arrays=[u, v], axis=1)
        return result[0] if np.ndim(point_world) == 1 else result

    def pixel_ray(self, pixel: np.ndarray) -> np.ndarray:
        """
        Unit world-frame direction from the camera position through a pixel.

        Args:
            pixel: (2,) pixel coordinates

        Returns:
            (3,) normalized ray direction
        """
        pixel = np.asarray(pixel, dtype=np.float64)
        ray_cam = np.array([
            (pixel[0] - self.principal_point_x) * self.pixel_size_x,
            (pixel[1] - self.principal_point_y) * self.pixel_size_y,
            self.focal_length,
        ])
        ray_world = self.rotation_matrix() @ ray_cam
        return ray_world / np.linalg.norm(ray_world)
