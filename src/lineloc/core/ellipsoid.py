from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

import numpy as np

from lineloc.core.derivatives import Gradient, GradientVector
from lineloc.errors import NoIntersectionError


def normalize_angle(angle: float, center: float) -> float:
    """Angle brought into [center - pi, center + pi)."""
    two_pi = 2.0 * math.pi
    return angle - two_pi * math.floor((angle + math.pi - center) / two_pi)


@dataclass(frozen=True)
class GeodeticPoint:
    latitude: float
    longitude: float
    altitude: float

    def __post_init__(self) -> None:
        if not -0.5 * math.pi - 1e-12 <= self.latitude <= 0.5 * math.pi + 1e-12:
            raise ValueError(f"latitude out of range: {self.latitude}")
        object.__setattr__(self, "longitude", normalize_angle(float(self.longitude), self._center()))

    def _center(self) -> float:
        return 0.0


@dataclass(frozen=True)
class NormalizedGeodeticPoint(GeodeticPoint):
    """Geodetic point whose longitude lies on the branch around `central_longitude`."""

    central_longitude: float = 0.0

    def _center(self) -> float:
        return float(self.central_longitude)


class EllipsoidId(str, Enum):
    GRS80 = "GRS80"
    WGS84 = "WGS84"
    IERS96 = "IERS96"
    IERS2003 = "IERS2003"


_ELLIPSOIDS: dict[EllipsoidId, tuple[float, float]] = {
    EllipsoidId.GRS80: (6378137.0, 1.0 / 298.257222101),
    EllipsoidId.WGS84: (6378137.0, 1.0 / 298.257223563),
    EllipsoidId.IERS96: (6378136.49, 1.0 / 298.25645),
    EllipsoidId.IERS2003: (6378136.6, 1.0 / 298.25642),
}


class ExtendedEllipsoid:
    """
    One-axis (oblate) ellipsoid expressed in the body frame, with the ray
    helpers needed by the intersection algorithms.
    """

    def __init__(self, equatorial_radius: float, flattening: float) -> None:
        if equatorial_radius <= 0.0:
            raise ValueError("equatorial radius must be > 0")
        if not 0.0 <= flattening < 1.0:
            raise ValueError("flattening must be in [0, 1)")
        self.a = float(equatorial_radius)
        self.f = float(flattening)
        self.b = self.a * (1.0 - self.f)
        self.e2 = self.f * (2.0 - self.f)

    @classmethod
    def select(cls, ellipsoid: EllipsoidId | str) -> "ExtendedEllipsoid":
        a, f = _ELLIPSOIDS[EllipsoidId(ellipsoid)]
        return cls(a, f)

    def __repr__(self) -> str:
        return f"ExtendedEllipsoid(a={self.a!r}, f={self.f!r})"

    # -- local frames ------------------------------------------------------

    @staticmethod
    def zenith(latitude: float, longitude: float) -> np.ndarray:
        cphi = math.cos(latitude)
        return np.array(
            [cphi * math.cos(longitude), cphi * math.sin(longitude), math.sin(latitude)], dtype=np.float64
        )

    @staticmethod
    def east(longitude: float) -> np.ndarray:
        return np.array([-math.sin(longitude), math.cos(longitude), 0.0], dtype=np.float64)

    @staticmethod
    def north(latitude: float, longitude: float) -> np.ndarray:
        sphi = math.sin(latitude)
        return np.array(
            [-sphi * math.cos(longitude), -sphi * math.sin(longitude), math.cos(latitude)], dtype=np.float64
        )

    # -- conversions -------------------------------------------------------

    def transform_to_cartesian(self, point: GeodeticPoint) -> np.ndarray:
        sphi = math.sin(point.latitude)
        cphi = math.cos(point.latitude)
        n = self.a / math.sqrt(1.0 - self.e2 * sphi * sphi)
        r = (n + point.altitude) * cphi
        return np.array(
            [
                r * math.cos(point.longitude),
                r * math.sin(point.longitude),
                (n * (1.0 - self.e2) + point.altitude) * sphi,
            ],
            dtype=np.float64,
        )

    def transform_to_geodetic(
        self, point: np.ndarray, central_longitude: float | None = None
    ) -> NormalizedGeodeticPoint:
        x, y, z = (float(c) for c in np.asarray(point, dtype=np.float64).reshape(3))
        lon = math.atan2(y, x)
        p = math.hypot(x, y)
        if p < 1e-9 * self.a:
            lat = math.copysign(0.5 * math.pi, z)
            h = abs(z) - self.b
        else:
            lat = math.atan2(z, p * (1.0 - self.e2))
            for _ in range(20):
                sphi = math.sin(lat)
                n = self.a / math.sqrt(1.0 - self.e2 * sphi * sphi)
                new_lat = math.atan2(z + self.e2 * n * sphi, p)
                if abs(new_lat - lat) < 1e-15:
                    lat = new_lat
                    break
                lat = new_lat
            sphi = math.sin(lat)
            h = p * math.cos(lat) + z * sphi - self.a * math.sqrt(1.0 - self.e2 * sphi * sphi)
        center = lon if central_longitude is None else float(central_longitude)
        return NormalizedGeodeticPoint(lat, lon, h, center)

    def convert_los(self, point: GeodeticPoint, los: np.ndarray) -> np.ndarray:
        """
        Rates (dlat/dk, dlon/dk, dh/dk) of a ray at a point, for a step k along `los`.
        """
        los = np.asarray(los, dtype=np.float64).reshape(3)
        sphi = math.sin(point.latitude)
        w = math.sqrt(1.0 - self.e2 * sphi * sphi)
        n = self.a / w
        m = self.a * (1.0 - self.e2) / (w * w * w)
        dlat = float(los @ self.north(point.latitude, point.longitude)) / (m + point.altitude)
        r = (n + point.altitude) * math.cos(point.latitude)
        dlon = float(los @ self.east(point.longitude)) / r if r > 1e-9 else 0.0
        dh = float(los @ self.zenith(point.latitude, point.longitude))
        return np.array([dlat, dlon, dh], dtype=np.float64)

    # -- rays --------------------------------------------------------------

    def _ray_parameter_at_altitude(self, position: np.ndarray, los: np.ndarray, altitude: float) -> float:
        # closed form on the ellipsoid inflated by `altitude`, then Newton along the ray
        aa = self.a + altitude
        bb = self.b + altitude
        if aa <= 0.0 or bb <= 0.0:
            raise NoIntersectionError(altitude=altitude)
        s = np.array([aa, aa, bb], dtype=np.float64)
        ps = position / s
        ls = los / s
        qa = float(ls @ ls)
        qb = float(ps @ ls)
        qc = float(ps @ ps) - 1.0
        delta = qb * qb - qa * qc
        if delta < 0.0:
            raise NoIntersectionError(
                "line-of-sight never crosses altitude",
                altitude=altitude,
                position=position.tolist(),
                los=los.tolist(),
            )
        sq = math.sqrt(delta)
        candidates = sorted(((-qb - sq) / qa, (-qb + sq) / qa))
        ks = [k for k in candidates if k >= 0.0]
        if not ks:
            raise NoIntersectionError(
                "line-of-sight points away from the surface",
                altitude=altitude,
                position=position.tolist(),
                los=los.tolist(),
            )
        k = ks[0]
        for _ in range(100):
            gp = self.transform_to_geodetic(position + k * los)
            delta_h = altitude - gp.altitude
            if abs(delta_h) <= 1e-6:
                return k
            rate = float(los @ self.zenith(gp.latitude, gp.longitude))
            if abs(rate) < 1e-15:
                break
            k += delta_h / rate
        raise NoIntersectionError(
            "altitude crossing did not converge",
            altitude=altitude,
            position=position.tolist(),
            los=los.tolist(),
        )

    def ray_parameter_at_altitude(self, position: np.ndarray, los: np.ndarray, altitude: float) -> float:
        """Ray abscissa k (in units of |los|) of the first crossing of `altitude`."""
        return self._ray_parameter_at_altitude(
            np.asarray(position, dtype=np.float64).reshape(3), np.asarray(los, dtype=np.float64).reshape(3), altitude
        )

    def point_at_altitude(self, position: np.ndarray, los: np.ndarray, altitude: float) -> np.ndarray:
        position = np.asarray(position, dtype=np.float64).reshape(3)
        los = np.asarray(los, dtype=np.float64).reshape(3)
        return position + self._ray_parameter_at_altitude(position, los, altitude) * los

    def point_on_ground(
        self, position: np.ndarray, los: np.ndarray, central_longitude: float | None = None
    ) -> NormalizedGeodeticPoint:
        return self.transform_to_geodetic(self.point_at_altitude(position, los, 0.0), central_longitude)

    # -- derivatives -------------------------------------------------------

    def altitude_derivatives(self, point: GradientVector) -> Gradient:
        """
        Height above the ellipsoid of a point carrying derivatives.

        The foot point and normal are taken from the plain value; the height
        gradient along the normal is then exact to first order.
        """
        gp = self.transform_to_geodetic(point.value)
        foot = self.transform_to_cartesian(GeodeticPoint(gp.latitude, gp.longitude, 0.0))
        return (point - foot).dot(self.zenith(gp.latitude, gp.longitude))
