"""
Time & frame context: interpolated spacecraft state and the transforms
between spacecraft, inertial and body (Earth-fixed) frames.

Conventions
-----------
- dates are seconds since the context reference date;
- quaternions are scalar-first (q0, q1, q2, q3) and map spacecraft-frame
  vectors to inertial-frame vectors;
- the body frame rotates about the inertial +Z axis at a constant rate, the
  angle between both frames being `initial_angle + rate * date`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from lineloc.errors import OutOfTimeRangeError

logger = logging.getLogger(__name__)

EARTH_ROTATION_RATE = 7.292115e-5  # rad/s


@dataclass(frozen=True)
class Transform:
    """Rigid transform p' = R p + t."""

    rotation: np.ndarray  # (3,3)
    translation: np.ndarray  # (3,)

    def transform_position(self, p: np.ndarray) -> np.ndarray:
        return self.rotation @ np.asarray(p, dtype=np.float64).reshape(3) + self.translation

    def transform_vector(self, v: np.ndarray) -> np.ndarray:
        return self.rotation @ np.asarray(v, dtype=np.float64).reshape(3)

    def compose(self, inner: "Transform") -> "Transform":
        """Transform applying `inner` first, then `self`."""
        return Transform(self.rotation @ inner.rotation, self.rotation @ inner.translation + self.translation)

    def inverse(self) -> "Transform":
        rt = self.rotation.T
        return Transform(rt, -(rt @ self.translation))


def _rot_z(angle: float) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]], dtype=np.float64)


class SpacecraftToObservedBody:
    """
    Tabulated orbit/attitude provider.

    Positions/velocities are interpolated with cubic Hermite splines (using the
    sampled velocities), attitudes with spherical linear interpolation.
    """

    def __init__(
        self,
        *,
        pv_dates: np.ndarray,
        positions: np.ndarray,
        velocities: np.ndarray,
        q_dates: np.ndarray,
        quaternions: np.ndarray,
        body_rotation_rate: float = EARTH_ROTATION_RATE,
        initial_angle: float = 0.0,
        overshoot_tolerance: float = 1.0,
    ) -> None:
        from scipy.interpolate import CubicHermiteSpline  # type: ignore
        from scipy.spatial.transform import Rotation, Slerp  # type: ignore

        pv_dates = np.asarray(pv_dates, dtype=np.float64).reshape(-1)
        positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        velocities = np.asarray(velocities, dtype=np.float64).reshape(-1, 3)
        q_dates = np.asarray(q_dates, dtype=np.float64).reshape(-1)
        quaternions = np.asarray(quaternions, dtype=np.float64).reshape(-1, 4)
        if pv_dates.size < 2 or q_dates.size < 2:
            raise ValueError("need at least two position/velocity and two attitude samples")
        if positions.shape[0] != pv_dates.size or velocities.shape[0] != pv_dates.size:
            raise ValueError("inconsistent position/velocity sample sizes")
        if quaternions.shape[0] != q_dates.size:
            raise ValueError("inconsistent attitude sample sizes")
        if np.any(np.diff(pv_dates) <= 0.0) or np.any(np.diff(q_dates) <= 0.0):
            raise ValueError("sample dates must be strictly increasing")

        self._pv = CubicHermiteSpline(pv_dates, positions, velocities, axis=0)
        # scipy expects scalar-last quaternions
        rotations = Rotation.from_quat(np.concatenate([quaternions[:, 1:], quaternions[:, :1]], axis=1))
        self._slerp = Slerp(q_dates, rotations)

        self.body_rotation_rate = float(body_rotation_rate)
        self.initial_angle = float(initial_angle)
        self.overshoot_tolerance = float(overshoot_tolerance)
        self.min_date = float(max(pv_dates[0], q_dates[0]))
        self.max_date = float(min(pv_dates[-1], q_dates[-1]))
        self._q_range = (float(q_dates[0]), float(q_dates[-1]))
        logger.debug(
            "Context built from [%d] PV and [%d] attitude samples over [%s, %s]",
            pv_dates.size,
            q_dates.size,
            self.min_date,
            self.max_date,
        )

    def is_in_range(self, date: float) -> bool:
        return self.min_date - self.overshoot_tolerance <= date <= self.max_date + self.overshoot_tolerance

    def check_date(self, date: float) -> None:
        if not self.is_in_range(date):
            raise OutOfTimeRangeError(date=date, min_date=self.min_date, max_date=self.max_date)

    def position_velocity(self, date: float) -> tuple[np.ndarray, np.ndarray]:
        """Spacecraft position and velocity in the inertial frame."""
        self.check_date(date)
        return np.asarray(self._pv(date), dtype=np.float64), np.asarray(self._pv(date, 1), dtype=np.float64)

    def attitude(self, date: float) -> np.ndarray:
        """Rotation matrix mapping spacecraft-frame vectors to inertial-frame vectors."""
        self.check_date(date)
        t = float(np.clip(date, *self._q_range))
        return np.asarray(self._slerp([t]).as_matrix()[0], dtype=np.float64)

    def sc_to_inertial(self, date: float) -> Transform:
        pos, _vel = self.position_velocity(date)
        return Transform(self.attitude(date), pos)

    def inertial_to_body(self, date: float) -> Transform:
        angle = self.initial_angle + self.body_rotation_rate * date
        return Transform(_rot_z(-angle), np.zeros((3,), dtype=np.float64))

    def body_to_inertial(self, date: float) -> Transform:
        return self.inertial_to_body(date).inverse()

    def sc_to_body(self, date: float) -> Transform:
        return self.inertial_to_body(date).compose(self.sc_to_inertial(date))
