import math

import numpy as np
import pytest

from lineloc.core.derivatives import GradientVector
from lineloc.core.ellipsoid import EllipsoidId, ExtendedEllipsoid, GeodeticPoint, NormalizedGeodeticPoint
from lineloc.core.geometry import axis_angle_matrix, closest_approach, mean_plane_normal
from lineloc.errors import NoIntersectionError
from lineloc.sensor.parameters import ParameterDriver


def test_closest_approach_hits_known_point():
    target = np.array([10.0, -5.0, 500.0], dtype=np.float64)
    o1 = np.array([0.0, 0.0, 0.0], dtype=np.float64)
    o2 = np.array([100.0, 0.0, 0.0], dtype=np.float64)
    d1 = target - o1
    d2 = target - o2
    d1 /= np.linalg.norm(d1)
    d2 /= np.linalg.norm(d2)
    xyz, dist = closest_approach(o1, d1, o2, d2)
    assert np.linalg.norm(xyz - target) < 1e-6
    assert dist < 1e-9


def test_closest_approach_skew_lines_distance():
    _mid, dist = closest_approach(
        np.array([0.0, 0.0, 0.0]), np.array([1.0, 0.0, 0.0]), np.array([0.0, 3.0, 1.0]), np.array([0.0, 0.0, 1.0])
    )
    assert dist == pytest.approx(3.0)


def test_axis_angle_matrix_rotates_x_to_y():
    r = axis_angle_matrix(np.array([0.0, 0.0, 2.0]), 0.5 * math.pi)
    assert np.allclose(r @ np.array([1.0, 0.0, 0.0]), [0.0, 1.0, 0.0], atol=1e-15)


def test_mean_plane_normal_of_planar_fan():
    theta = np.linspace(-0.3, 0.3, 11)
    dirs = np.stack([np.zeros_like(theta), np.sin(theta), np.cos(theta)], axis=1)
    n = mean_plane_normal(dirs)
    assert np.allclose(n, [-1.0, 0.0, 0.0], atol=1e-12)
    with pytest.raises(ValueError):
        mean_plane_normal(dirs[:1])


def test_geodetic_cartesian_roundtrip():
    ellipsoid = ExtendedEllipsoid.select(EllipsoidId.WGS84)
    rng = np.random.default_rng(0)
    for _ in range(50):
        gp = GeodeticPoint(rng.uniform(-1.5, 1.5), rng.uniform(-math.pi, math.pi), rng.uniform(-500.0, 9000.0))
        back = ellipsoid.transform_to_geodetic(ellipsoid.transform_to_cartesian(gp), central_longitude=0.0)
        assert back.latitude == pytest.approx(gp.latitude, abs=1e-12)
        assert back.longitude == pytest.approx(gp.longitude, abs=1e-12)
        assert back.altitude == pytest.approx(gp.altitude, abs=1e-6)


def test_geodetic_pole():
    ellipsoid = ExtendedEllipsoid.select("WGS84")
    gp = ellipsoid.transform_to_geodetic(np.array([0.0, 0.0, ellipsoid.b + 100.0]))
    assert gp.latitude == pytest.approx(0.5 * math.pi)
    assert gp.altitude == pytest.approx(100.0)


def test_normalized_longitude_follows_central_longitude():
    gp = NormalizedGeodeticPoint(0.1, -3.1, 0.0, central_longitude=3.0)
    assert gp.longitude == pytest.approx(-3.1 + 2.0 * math.pi)
    assert GeodeticPoint(0.0, 3.5, 0.0).longitude == pytest.approx(3.5 - 2.0 * math.pi)
    with pytest.raises(ValueError):
        GeodeticPoint(2.0, 0.0, 0.0)


def test_point_at_altitude_and_miss():
    ellipsoid = ExtendedEllipsoid.select("GRS80")
    position = np.array([7.0e6, 1.0e5, 2.0e5])
    los = -position / np.linalg.norm(position)
    for h in (0.0, 1500.0):
        p = ellipsoid.point_at_altitude(position, los, h)
        assert ellipsoid.transform_to_geodetic(p).altitude == pytest.approx(h, abs=1e-6)
    with pytest.raises(NoIntersectionError) as info:
        ellipsoid.point_on_ground(position, -los)
    assert "altitude" in info.value.context
    with pytest.raises(NoIntersectionError):
        ellipsoid.point_on_ground(position, np.array([0.0, 0.0, 1.0]))


def test_altitude_crossing_without_convergence_raises(monkeypatch):
    ellipsoid = ExtendedEllipsoid.select("GRS80")
    position = np.array([7.0e6, 1.0e5, 2.0e5])
    los = -position / np.linalg.norm(position)

    def stuck(self, point, central_longitude=None):
        return NormalizedGeodeticPoint(0.1, 0.2, 250.0, 0.0)

    monkeypatch.setattr(ExtendedEllipsoid, "transform_to_geodetic", stuck)
    with pytest.raises(NoIntersectionError, match="did not converge"):
        ellipsoid.point_at_altitude(position, los, 0.0)


def test_convert_los_matches_finite_differences():
    ellipsoid = ExtendedEllipsoid.select("WGS84")
    gp = GeodeticPoint(0.7, -1.2, 350.0)
    p = ellipsoid.transform_to_cartesian(gp)
    los = np.array([0.3, -0.5, -0.8])
    los /= np.linalg.norm(los)
    rates = ellipsoid.convert_los(gp, los)
    k = 1e-2
    g1 = ellipsoid.transform_to_geodetic(p + k * los)
    g0 = ellipsoid.transform_to_geodetic(p - k * los)
    fd = np.array([g1.latitude - g0.latitude, g1.longitude - g0.longitude, g1.altitude - g0.altitude]) / (2 * k)
    assert np.allclose(rates, fd, rtol=1e-6, atol=1e-12)


def test_altitude_derivatives_match_finite_differences():
    ellipsoid = ExtendedEllipsoid.select("WGS84")
    driver = ParameterDriver("shift", reference_value=10.0, scale=1.0, selected=True)
    base = ellipsoid.transform_to_cartesian(GeodeticPoint(0.3, 0.2, 50.0))
    direction = np.array([0.2, 0.9, -0.1])
    point = GradientVector(base + driver.value * direction, direction.reshape(3, 1))
    h = ellipsoid.altitude_derivatives(point)
    eps = 1.0
    up = ellipsoid.transform_to_geodetic(base + (driver.value + eps) * direction).altitude
    down = ellipsoid.transform_to_geodetic(base + (driver.value - eps) * direction).altitude
    assert h.value == pytest.approx(ellipsoid.transform_to_geodetic(point.value).altitude, abs=1e-6)
    assert h.partial(0) == pytest.approx((up - down) / (2 * eps), rel=1e-6)
