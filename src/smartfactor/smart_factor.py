"""
Smart factors for structure from motion.

A smart factor holds every 2D observation of one landmark and, at
linearization time, eliminates the landmark so that only the observing
cameras remain in the linear system:

    cameras, point
        -> per measurement: project, residual b_i, whitened [F_i | E_i | b_i]
        -> Q = (E'E + lambda * D)^-1
        -> Hessian, implicit Schur or projected Jacobian factor

The landmark estimate is supplied by the caller on every call; nothing is
cached between linearizations.
"""
from abc import ABC, abstractmethod
import logging
from typing import ClassVar, Dict, List, Optional, Sequence, Tuple, Union

from attrs import define, field
import numpy as np
from numpy import ndarray

from .camera import PinholeCamera
from .config import LinearizationParams
from .errors import CheiralityError, LinearizationError
from .factors import (
    ImplicitSchurFactor,
    JacobianFactorQ,
    JacobianFactorSVD,
    LinearFactor,
    RegularHessianFactor,
)
from .schur import build_full_f, left_null_space, point_covariance, sparse_schur_complement
from .types.enums import FailureKind, LinearizationMode
from .types.key import Key
from .types.measurements import PixelMeasurement, SfmTrack
from .types.noise import NoiseModel
from .types.variables import Calibration, Pose3D
from .utils.conversions import to_point3
from .utils.validation import _check_lambda
from .values import CameraValues

logger = logging.getLogger(__name__)

KeyLike = Union[Key, str]


def _to_key(key: KeyLike) -> Key:
    if isinstance(key, Key):
        return key
    return Key(key)


@define
class JacobianBlocks:
    """
    The whitened linear system of one landmark at the current estimate:
    F blocks (one 2xD block per measurement), E (2m x 3), b (2m) and the
    total squared whitened error f.
    """

    fblocks: List[Tuple[Key, ndarray]] = field(factory=list)
    E: ndarray = field(factory=lambda: np.zeros((0, 3)))
    b: ndarray = field(factory=lambda: np.zeros(0))
    f: float = 0.0

    @property
    def keys(self) -> List[Key]:
        return [key for key, _ in self.fblocks]

    @property
    def size(self) -> int:
        return len(self.fblocks)


@define
class LinearizationResult:
    """
    Outcome of `SmartFactor.linearize`: either a linear factor, or the kind
    of failure that prevented one.
    """

    mode: LinearizationMode
    factor: Optional[LinearFactor] = None
    failure: Optional[FailureKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None


class SmartFactor(ABC):
    """
    Base class of the smart factors. Subclasses fix the camera variable
    dimension D and how the projection Jacobians are stacked into F_i.

    Args:
        body_P_sensor: pose of the camera in the body frame. When set, the
            camera variables are body poses and every projection goes through
            body * body_P_sensor.
    """

    D: ClassVar[int]

    def __init__(self, body_P_sensor: Optional[Pose3D] = None):
        if body_P_sensor is not None and not isinstance(body_P_sensor, Pose3D):
            raise TypeError(f"body_P_sensor must be a Pose3D, got {type(body_P_sensor)}")
        self._body_P_sensor = body_P_sensor
        self._measured: List[ndarray] = []
        self._keys: List[Key] = []
        self._noise: List[NoiseModel] = []

    @abstractmethod
    def _stack_camera_jacobian(self, H_pose: ndarray, H_cal: ndarray) -> ndarray:
        """Builds the 2xD block F_i from the pose and calibration Jacobians."""

    # measurement set

    def add(self, pixel: Sequence[float], key: KeyLike, noise: NoiseModel) -> None:
        """
        Adds one observation of the landmark.

        Args:
            pixel: the measured pixel (u, v)
            key: the key of the observing camera
            noise: a 2-dimensional noise model

        Raises:
            ValueError: the pixel is not a finite 2-vector or the noise is not 2-dimensional
        """
        self.add_measurement(PixelMeasurement(_to_key(key), pixel, noise))

    def add_measurement(self, measurement: PixelMeasurement) -> None:
        self._measured.append(measurement.pixel.copy())
        self._keys.append(measurement.key)
        self._noise.append(measurement.noise)

    def add_batch(
        self,
        pixels: Sequence[Sequence[float]],
        keys: Sequence[KeyLike],
        noise: Union[NoiseModel, Sequence[NoiseModel]],
    ) -> None:
        """
        Adds several observations. `noise` is either one model shared by all
        of them or one model per observation.

        Nothing is added if any entry is invalid.

        Raises:
            ValueError: the lengths of pixels, keys and noise models disagree
        """
        if len(pixels) != len(keys):
            raise ValueError(f"Got {len(pixels)} pixels but {len(keys)} keys")
        if isinstance(noise, NoiseModel):
            noises = [noise] * len(keys)
        else:
            noises = list(noise)
            if len(noises) != len(keys):
                raise ValueError(f"Got {len(noises)} noise models for {len(keys)} measurements")

        measurements = [
            PixelMeasurement(_to_key(key), pixel, model)
            for pixel, key, model in zip(pixels, keys, noises)
        ]
        for measurement in measurements:
            self.add_measurement(measurement)

    def add_track(self, track: SfmTrack, noise: NoiseModel) -> None:
        """Adds every (key, pixel) pair of an SfM track with a shared noise model."""
        self.add_batch(track.pixels, track.keys, noise)

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def dim(self) -> int:
        return self.D

    @property
    def measured(self) -> List[ndarray]:
        return [z.copy() for z in self._measured]

    @property
    def keys(self) -> List[Key]:
        return list(self._keys)

    @property
    def noise(self) -> List[NoiseModel]:
        return list(self._noise)

    @property
    def measurements(self) -> List[PixelMeasurement]:
        return [
            PixelMeasurement(key, z, model)
            for z, key, model in zip(self._measured, self._keys, self._noise)
        ]

    @property
    def body_P_sensor(self) -> Optional[Pose3D]:
        return self._body_P_sensor

    def cameras(self, values: CameraValues) -> List[PinholeCamera]:
        """The cameras of this factor's keys, in measurement order."""
        return values.cameras_for(self._keys)

    # projection

    def _check_cameras(self, cameras: Sequence[PinholeCamera]) -> List[PinholeCamera]:
        if len(self._keys) == 0:
            raise ValueError("Cannot linearize a smart factor without measurements")
        cameras = list(cameras)
        if len(cameras) != len(self._keys):
            raise ValueError(
                f"Expected {len(self._keys)} cameras (one per measurement), got {len(cameras)}"
            )
        return cameras

    def project_camera(
        self, camera: PinholeCamera, point: ndarray
    ) -> Tuple[ndarray, ndarray, ndarray]:
        """
        Projects the point with one camera, applying the sensor offset.

        Returns:
            (pixel, F_i (2xD), E_i (2x3)), unwhitened

        Raises:
            CheiralityError: the point is behind the camera
        """
        sensor_camera = camera.with_sensor_offset(self._body_P_sensor)
        pixel, H_pose, H_point, H_cal = sensor_camera.project(point, compute_jacobians=True)
        if self._body_P_sensor is not None:
            # map the sensor pose tangent back to the body pose tangent
            H_pose = H_pose @ self._body_P_sensor.inverse().adjoint_matrix()
        return pixel, self._stack_camera_jacobian(H_pose, H_cal), H_point

    def _project_measurement(self, index: int, camera: PinholeCamera, point: ndarray):
        key = self._keys[index]
        try:
            return self.project_camera(camera, point)
        except CheiralityError as e:
            raise CheiralityError(
                f"Measurement {index} ({key}): {e}", depth=e.depth, index=index, key=key
            ) from e

    def reprojection_error(self, cameras: Sequence[PinholeCamera], point: ndarray) -> ndarray:
        """
        Stacked unwhitened reprojection errors pi_i(point) - z_i (length 2m).

        Raises:
            CheiralityError: the point is behind one of the cameras
        """
        cameras = self._check_cameras(cameras)
        point = to_point3(point)
        errors = np.zeros(2 * len(self))
        for i, (camera, z) in enumerate(zip(cameras, self._measured)):
            sensor_camera = camera.with_sensor_offset(self._body_P_sensor)
            try:
                pixel = sensor_camera.project(point)
            except CheiralityError as e:
                raise CheiralityError(
                    f"Measurement {i} ({self._keys[i]}): {e}",
                    depth=e.depth,
                    index=i,
                    key=self._keys[i],
                ) from e
            errors[2 * i : 2 * i + 2] = pixel - z
        return errors

    def total_reprojection_error(
        self, cameras: Sequence[PinholeCamera], point: ndarray
    ) -> float:
        """Returns 1/2 sum_i ||W_i (pi_i(point) - z_i)||^2."""
        errors = self.reprojection_error(cameras, point)
        return 0.5 * sum(
            model.distance(errors[2 * i : 2 * i + 2]) for i, model in enumerate(self._noise)
        )

    # assembly

    def compute_jacobians(
        self, cameras: Sequence[PinholeCamera], point: ndarray
    ) -> JacobianBlocks:
        """
        Assembles the whitened F blocks, E and b at the given estimate.

        Args:
            cameras: one camera per measurement, in measurement order
            point: the landmark estimate (3,)

        Returns:
            the whitened system, with f the total squared whitened error

        Raises:
            ValueError: no measurements, or the camera count does not match
            CheiralityError: the point is behind one of the cameras
        """
        cameras = self._check_cameras(cameras)
        point = to_point3(point)
        m = len(self)

        E = np.zeros((2 * m, 3))
        b = np.zeros(2 * m)
        f = 0.0
        fblocks: List[Tuple[Key, ndarray]] = []
        for i, camera in enumerate(cameras):
            pixel, Fi, Ei = self._project_measurement(i, camera, point)
            bi = -(pixel - self._measured[i])
            Fi, Ei, bi = self._noise[i].whiten_system(Fi, Ei, b=bi)
            f += float(bi @ bi)
            E[2 * i : 2 * i + 2] = Ei
            b[2 * i : 2 * i + 2] = bi
            fblocks.append((self._keys[i], Fi))
        return JacobianBlocks(fblocks=fblocks, E=E, b=b, f=f)

    def compute_jacobians_with_covariance(
        self,
        cameras: Sequence[PinholeCamera],
        point: ndarray,
        lambda_: float = 0.0,
        diagonal_damping: bool = False,
    ) -> Tuple[JacobianBlocks, ndarray]:
        """
        Like `compute_jacobians`, and also eliminates the point.

        Returns:
            (blocks, Q) with Q = (E'E + lambda * D)^-1

        Raises:
            DegenerateReductionError: E'E + lambda * D is not positive definite
        """
        _check_lambda(lambda_)
        blocks = self.compute_jacobians(cameras, point)
        Q = point_covariance(blocks.E, lambda_, diagonal_damping)
        return blocks, Q

    def compute_jacobians_dense(
        self,
        cameras: Sequence[PinholeCamera],
        point: ndarray,
        lambda_: float = 0.0,
        diagonal_damping: bool = False,
    ) -> Tuple[ndarray, ndarray, ndarray, ndarray, float]:
        """Returns (F, E, Q, b, f) with F materialized as a 2m x Dm matrix."""
        blocks, Q = self.compute_jacobians_with_covariance(
            cameras, point, lambda_, diagonal_damping
        )
        return build_full_f(blocks.fblocks), blocks.E, Q, blocks.b, blocks.f

    def compute_jacobians_svd(
        self,
        cameras: Sequence[PinholeCamera],
        point: ndarray,
        lambda_: float = 0.0,
        diagonal_damping: bool = False,
    ) -> Tuple[JacobianBlocks, ndarray]:
        """
        Returns the whitened system and Enull, an orthonormal basis of the
        null space of E' (2m x (2m - 3)). The damping arguments are accepted
        for a uniform call signature; the null space does not depend on them.
        """
        _check_lambda(lambda_)
        blocks = self.compute_jacobians(cameras, point)
        return blocks, left_null_space(blocks.E)

    def compute_ep(self, cameras: Sequence[PinholeCamera], point: ndarray) -> Tuple[ndarray, ndarray]:
        """
        Whitened point Jacobian E and its undamped covariance Q = (E'E)^-1.

        Raises:
            DegenerateReductionError: E'E is singular
        """
        cameras = self._check_cameras(cameras)
        point = to_point3(point)
        E = np.zeros((2 * len(self), 3))
        for i, camera in enumerate(cameras):
            _, _, Ei = self._project_measurement(i, camera, point)
            Ei, _ = self._noise[i].whiten_system(Ei, b=np.zeros(2))
            E[2 * i : 2 * i + 2] = Ei
        return E, point_covariance(E)

    # linear factors

    def create_hessian_factor(
        self,
        cameras: Sequence[PinholeCamera],
        point: ndarray,
        lambda_: float = 0.0,
        diagonal_damping: bool = False,
    ) -> RegularHessianFactor:
        """
        Linearizes into a block Hessian over the cameras, with the point
        eliminated by the sparse Schur complement.
        """
        blocks, Q = self.compute_jacobians_with_covariance(
            cameras, point, lambda_, diagonal_damping
        )
        Gs, gs = sparse_schur_complement(blocks.fblocks, blocks.E, Q, blocks.b)
        logger.debug(f"Hessian factor over {blocks.size} cameras, f = {blocks.f:.6g}")
        return RegularHessianFactor(blocks.keys, Gs, gs, blocks.f)

    def create_implicit_schur_factor(
        self,
        cameras: Sequence[PinholeCamera],
        point: ndarray,
        lambda_: float = 0.0,
        diagonal_damping: bool = False,
    ) -> ImplicitSchurFactor:
        blocks, Q = self.compute_jacobians_with_covariance(
            cameras, point, lambda_, diagonal_damping
        )
        logger.debug(f"Implicit Schur factor over {blocks.size} cameras")
        return ImplicitSchurFactor(blocks.fblocks, blocks.E, Q, blocks.b)

    def create_jacobian_q_factor(
        self,
        cameras: Sequence[PinholeCamera],
        point: ndarray,
        lambda_: float = 0.0,
        diagonal_damping: bool = False,
    ) -> JacobianFactorQ:
        blocks, Q = self.compute_jacobians_with_covariance(
            cameras, point, lambda_, diagonal_damping
        )
        logger.debug(f"Q-projected Jacobian factor over {blocks.size} cameras")
        return JacobianFactorQ(blocks.fblocks, blocks.E, Q, blocks.b)

    def create_jacobian_svd_factor(
        self,
        cameras: Sequence[PinholeCamera],
        point: ndarray,
        lambda_: float = 0.0,
        diagonal_damping: bool = False,
    ) -> JacobianFactorSVD:
        blocks, Enull = self.compute_jacobians_svd(cameras, point, lambda_, diagonal_damping)
        logger.debug(
            f"SVD-projected Jacobian factor over {blocks.size} cameras, {Enull.shape[1]} rows"
        )
        return JacobianFactorSVD(blocks.fblocks, Enull, blocks.b)

    def linearize(
        self,
        cameras: Sequence[PinholeCamera],
        point: ndarray,
        mode: Optional[LinearizationMode] = None,
        params: Optional[LinearizationParams] = None,
    ) -> LinearizationResult:
        """
        Linearizes in the requested mode, reporting cheirality and
        degenerate point reductions as a failed result instead of raising.

        Args:
            cameras: one camera per measurement
            point: the landmark estimate
            mode: overrides `params.mode` when given
            params: damping and mode (defaults: lambda 0, Hessian)

        Returns:
            the result, with `factor` set on success and `failure` otherwise
        """
        if params is None:
            params = LinearizationParams()
        if mode is None:
            mode = params.mode
        creators = {
            LinearizationMode.HESSIAN: self.create_hessian_factor,
            LinearizationMode.IMPLICIT_SCHUR: self.create_implicit_schur_factor,
            LinearizationMode.JACOBIAN_Q: self.create_jacobian_q_factor,
            LinearizationMode.JACOBIAN_SVD: self.create_jacobian_svd_factor,
        }
        if mode not in creators:
            raise ValueError(f"Unknown linearization mode: {mode}")

        try:
            factor = creators[mode](cameras, point, params.lambda_, params.diagonal_damping)
        except LinearizationError as e:
            logger.debug(f"Linearization ({mode.name}) failed with {e.kind.name}: {e}")
            return LinearizationResult(mode=mode, failure=e.kind, message=str(e))
        return LinearizationResult(mode=mode, factor=factor)

    def linearize_values(
        self,
        values: CameraValues,
        point: ndarray,
        mode: Optional[LinearizationMode] = None,
        params: Optional[LinearizationParams] = None,
    ) -> LinearizationResult:
        """`linearize` with the cameras looked up by key in `values`."""
        return self.linearize(self.cameras(values), point, mode, params)

    # comparison and output

    def equals(self, other: "SmartFactor", tol: float = 1e-9) -> bool:
        """
        Same factor type, same sensor offset, and the same measurements (key,
        pixel and noise) in the same order.
        """
        if type(self) is not type(other) or len(self) != len(other):
            return False
        if (self._body_P_sensor is None) != (other._body_P_sensor is None):
            return False
        if self._body_P_sensor is not None and not self._body_P_sensor.equals(
            other._body_P_sensor, tol
        ):
            return False
        return all(
            mine.equals(theirs, tol)
            for mine, theirs in zip(self.measurements, other.measurements)
        )

    def __str__(self) -> str:
        return self._format("", str)

    def _format(self, prefix: str, key_formatter) -> str:
        lines = [f"{prefix}{type(self).__name__} (D = {self.D}, {len(self)} measurements)"]
        if self._body_P_sensor is not None:
            lines.append(f"{prefix}  body_P_sensor: {self._body_P_sensor}")
        for z, key, model in zip(self._measured, self._keys, self._noise):
            lines.append(f"{prefix}  {key_formatter(key)}: z = {z.tolist()}, noise = {model}")
        return "\n".join(lines)

    def print(self, prefix: str = "", key_formatter=str) -> None:
        print(self._format(prefix, key_formatter))

    def to_dict(self) -> Dict:
        from .serialization import factor_to_dict

        return factor_to_dict(self)

    @staticmethod
    def from_dict(data: Dict) -> "SmartFactor":
        from .serialization import factor_from_dict

        return factor_from_dict(data)


class SmartPoseFactor(SmartFactor):
    """
    Smart factor over camera poses with fixed, known calibrations (D = 6).
    """

    D: ClassVar[int] = Pose3D.DIM

    def _stack_camera_jacobian(self, H_pose: ndarray, H_cal: ndarray) -> ndarray:
        return H_pose


class SmartCameraFactor(SmartFactor):
    """
    Smart factor over full cameras: pose and Cal3_S2 calibration (D = 11).
    """

    D: ClassVar[int] = Pose3D.DIM + Calibration.DIM

    def _stack_camera_jacobian(self, H_pose: ndarray, H_cal: ndarray) -> ndarray:
        return np.hstack([H_pose, H_cal])
