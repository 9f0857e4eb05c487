from __future__ import annotations

import math
import warnings

import numpy as np
import pytest

from lineloc.api.builder import LocalizerBuilder
from lineloc.api.localizer import Localizer
from lineloc.core.derivatives import DerivativeGenerator
from lineloc.core.ellipsoid import GeodeticPoint, NormalizedGeodeticPoint
from lineloc.core.frames import EARTH_ROTATION_RATE
from lineloc.errors import (
    DemNonConvergenceError,
    OutOfCoverageError,
    OutOfTimeRangeError,
    UninitializedContextError,
    UnknownSensorError,
)
from lineloc.intersection.algorithms import AlgorithmId
from lineloc.intersection.refraction import AtmosphericRefraction
from lineloc.raster.updaters import GridTileUpdater

LINE_RATE = 100.0
NB_PIXELS = 21


def _hills() -> GridTileUpdater:
    lat = np.linspace(-0.01, 0.01, 41)
    lon = np.linspace(-0.01, 0.01, 41)
    grid = 400.0 + 250.0 * np.sin(700.0 * lat)[:, None] * np.cos(900.0 * lon)[None, :]
    return GridTileUpdater(-0.01, -0.01, 0.0005, 0.0005, grid, tile_size=17)


def test_nadir_center_pixel_hits_origin(nadir_localizer):
    gp = nadir_localizer.direct_location("nadir", 0.0, 0.5 * (NB_PIXELS - 1))
    assert abs(gp.latitude) < 1e-9
    assert abs(gp.longitude) < 1e-9
    assert abs(gp.altitude) < 1e-6


def test_nadir_ground_track_drifts_with_earth_rotation(nadir_localizer):
    line = 1500.0
    gp = nadir_localizer.direct_location("nadir", line, 10.0)
    assert gp.longitude == pytest.approx(-EARTH_ROTATION_RATE * line / LINE_RATE, abs=1e-9)
    assert gp.latitude > 0.0


def test_direct_localization_returns_one_point_per_pixel(nadir_localizer):
    points = nadir_localizer.direct_localization("nadir", 12.0)
    assert len(points) == NB_PIXELS
    single = nadir_localizer.direct_location("nadir", 12.0, 3.0)
    assert points[3].latitude == pytest.approx(single.latitude, abs=1e-14)
    assert points[3].longitude == pytest.approx(single.longitude, abs=1e-14)
    # pixels spread across track, i.e. along longitude for a polar orbit
    assert np.all(np.diff([p.longitude for p in points]) != 0.0)


@pytest.mark.parametrize("line, pixel", [(0.0, 10.0), (123.4, 7.3), (-850.0, 0.0), (2000.5, 20.0)])
def test_direct_inverse_roundtrip(nadir_localizer, line, pixel):
    gp = nadir_localizer.direct_location("nadir", line, pixel)
    sp = nadir_localizer.inverse_localization("nadir", gp, -3000.0, 3000.0)
    assert sp is not None
    assert sp.line_number == pytest.approx(line, abs=1e-6)
    assert sp.pixel_number == pytest.approx(pixel, abs=1e-6)


def test_single_pixel_sensor_roundtrip(make_sensor, make_builder):
    localizer = make_builder(sensors=(make_sensor("mono", nb_pixels=1),)).build()
    gp = localizer.direct_location("mono", 321.0, 0.0)
    sp = localizer.inverse_localization("mono", gp, 0.0, 1000.0)
    assert sp is not None
    assert sp.line_number == pytest.approx(321.0, abs=1e-6)
    assert sp.pixel_number == 0.0


def test_inverse_localization_not_seen(nadir_localizer):
    gp = nadir_localizer.direct_location("nadir", 500.0, 10.0)
    # outside of the searched lines
    assert nadir_localizer.inverse_localization("nadir", gp, -400.0, 400.0) is None
    # far across track
    far = GeodeticPoint(gp.latitude, gp.longitude + 0.05, 0.0)
    assert nadir_localizer.inverse_localization("nadir", far, -3000.0, 3000.0) is None


def test_context_and_sensor_errors(nadir_localizer):
    bare = Localizer("bare")
    with pytest.raises(UninitializedContextError):
        bare.direct_location_of_ray(0.0, np.zeros(3), np.array([0.0, 0.0, 1.0]))
    with pytest.raises(UnknownSensorError) as info:
        nadir_localizer.direct_location("missing", 0.0, 0.0)
    assert info.value.context["sensor"] == "missing"
    with pytest.raises(OutOfTimeRangeError):
        nadir_localizer.direct_location("nadir", 100.0 * LINE_RATE, 0.0)
    with pytest.raises(UninitializedContextError):
        LocalizerBuilder("empty").build()


def test_flat_dem_matches_ellipsoid(make_builder):
    ellipsoid_only = make_builder().build()
    dem = make_builder().set_algorithm(
        AlgorithmId.DEM_MARCHING, updater=GridTileUpdater.flat(0.0, -0.02, -0.02, 0.02, 0.02, 0.001)
    ).build()
    for line, pixel in ((0.0, 10.0), (77.0, 0.0), (-130.0, 20.0)):
        a = ellipsoid_only.direct_location("nadir", line, pixel)
        b = dem.direct_location("nadir", line, pixel)
        assert b.latitude == pytest.approx(a.latitude, abs=1e-10)
        assert b.longitude == pytest.approx(a.longitude, abs=1e-10)
        assert b.altitude == pytest.approx(0.0, abs=1e-5)


def test_constant_elevation_matches_flat_dem(make_builder):
    constant = make_builder().set_algorithm(AlgorithmId.CONSTANT_ELEVATION_OVER_ELLIPSOID, constant_elevation=500.0).build()
    dem = make_builder().set_algorithm(
        AlgorithmId.DEM_MARCHING, updater=GridTileUpdater.flat(500.0, -0.02, -0.02, 0.02, 0.02, 0.001)
    ).build()
    a = constant.direct_location("nadir", 40.0, 4.5)
    b = dem.direct_location("nadir", 40.0, 4.5)
    assert a.altitude == pytest.approx(500.0, abs=1e-6)
    assert b.altitude == pytest.approx(500.0, abs=1e-5)
    assert b.latitude == pytest.approx(a.latitude, abs=1e-10)
    assert b.longitude == pytest.approx(a.longitude, abs=1e-10)


def test_dem_intersection_lies_on_terrain(make_builder):
    localizer = make_builder().set_algorithm(AlgorithmId.DEM_MARCHING, updater=_hills(), max_cached_tiles=4).build()
    for line in (-300.0, 0.0, 250.0):
        for gp in localizer.direct_localization("nadir", line)[::5]:
            terrain = localizer.algorithm.get_elevation(gp.latitude, gp.longitude)
            assert gp.altitude == pytest.approx(terrain, abs=1e-4)
    assert len(localizer.algorithm.cache) <= 4


def test_dem_refinement_from_close_guess(make_builder):
    localizer = make_builder().set_algorithm(AlgorithmId.DEM_MARCHING, updater=_hills()).build()
    first = localizer.direct_location("nadir", 10.0, 5.0)
    second = localizer.direct_location("nadir", 10.0, 5.2, close_guess=first)
    full = localizer.direct_location("nadir", 10.0, 5.2)
    assert second.latitude == pytest.approx(full.latitude, abs=1e-9)
    assert second.longitude == pytest.approx(full.longitude, abs=1e-9)
    assert second.altitude == pytest.approx(full.altitude, abs=1e-3)


def test_dem_out_of_coverage(make_builder):
    far_away = GridTileUpdater.flat(0.0, 0.5, 0.5, 0.6, 0.6, 0.01)
    localizer = make_builder().set_algorithm(AlgorithmId.DEM_MARCHING, updater=far_away).build()
    with pytest.raises(OutOfCoverageError):
        localizer.direct_location("nadir", 0.0, 10.0)


def test_inverse_location_derivatives_match_finite_differences(nadir_localizer):
    sensor = nadir_localizer.get_line_sensor("nadir")
    roll = sensor.parameters_drivers()[0]
    roll.selected = True
    gp = nadir_localizer.direct_location("nadir", 42.0, 6.5)
    line, pixel = nadir_localizer.inverse_location_derivatives(
        "nadir", gp, -500.0, 500.0, DerivativeGenerator(sensor.parameters_drivers())
    )
    assert line.value == pytest.approx(42.0, abs=1e-6)
    assert pixel.value == pytest.approx(6.5, abs=1e-6)

    eps = 1e-5
    roll.set_value(eps)
    up = nadir_localizer.inverse_localization("nadir", gp, -500.0, 500.0)
    roll.set_value(-eps)
    down = nadir_localizer.inverse_localization("nadir", gp, -500.0, 500.0)
    roll.set_value(0.0)
    fd_pixel = (up.pixel_number - down.pixel_number) / (2 * eps)
    fd_line = (up.line_number - down.line_number) / (2 * eps)
    assert abs(fd_pixel) > 100.0
    assert pixel.partial(0) == pytest.approx(fd_pixel, rel=1e-3)
    assert line.partial(0) == pytest.approx(fd_line, abs=1e-2 * abs(fd_pixel))


def test_distance_between_stereo_rays_vanishes_on_tie_points(stereo_localizer):
    nadir = stereo_localizer.get_line_sensor("nadir")
    forward = stereo_localizer.get_line_sensor("forward")
    gp = stereo_localizer.direct_location("nadir", 0.0, 8.0)
    sp = stereo_localizer.inverse_localization("forward", gp, -3000.0, 3000.0)
    assert sp is not None
    assert sp.line_number < 0.0  # the forward sensor sees the point first
    distance, altitude = stereo_localizer.distance_between_los(
        "nadir", nadir.get_date(0.0), 8.0, "forward", forward.get_date(sp.line_number), sp.pixel_number
    )
    assert distance < 1e-3
    assert altitude == pytest.approx(0.0, abs=1e-2)

    # a pixel shift across track opens a gap of about one pixel footprint
    shifted, _ = stereo_localizer.distance_between_los(
        "nadir", nadir.get_date(0.0), 9.0, "forward", forward.get_date(sp.line_number), sp.pixel_number
    )
    footprint = 700e3 * math.tan(0.002)
    assert shifted == pytest.approx(footprint, rel=0.2)


def test_dem_edge_within_tolerance_uses_nearest_cell(make_builder):
    step = 0.001
    reference = make_builder().build().direct_localization("nadir", 0.0)
    # the line sits a sixteenth of a cell south of the grid
    near = GridTileUpdater.flat(0.0, step / 16, -0.02, 0.02, 0.02, step)
    localizer = make_builder().set_algorithm(AlgorithmId.DEM_MARCHING, updater=near).build()
    for a, b in zip(reference, localizer.direct_localization("nadir", 0.0)):
        assert b.latitude == pytest.approx(a.latitude, abs=1e-10)
        assert b.longitude == pytest.approx(a.longitude, abs=1e-10)
        assert b.altitude == pytest.approx(0.0, abs=1e-5)

    # a quarter of a cell is beyond the tile tolerance
    far = GridTileUpdater.flat(0.0, step / 4, -0.02, 0.02, 0.02, step)
    localizer = make_builder().set_algorithm(AlgorithmId.DEM_MARCHING, updater=far).build()
    with pytest.raises(OutOfCoverageError):
        localizer.direct_location("nadir", 0.0, 10.0)


def test_repeated_dem_queries_fetch_tiles_once(make_builder):
    updater = _hills()
    localizer = make_builder().set_algorithm(AlgorithmId.DEM_MARCHING, updater=updater).build()
    first = localizer.direct_localization("nadir", 120.0)
    fetched = updater.calls
    assert fetched >= 1
    second = localizer.direct_localization("nadir", 120.0)
    assert updater.calls == fetched
    assert localizer.algorithm.cache.fetch_count == fetched
    assert [(p.latitude, p.longitude, p.altitude) for p in second] == [
        (p.latitude, p.longitude, p.altitude) for p in first
    ]


def test_dem_root_refinement_failure_is_reported(make_builder, monkeypatch):
    import scipy.optimize

    def no_root(*_args, **_kwargs):
        raise RuntimeError("Failed to converge after 200 iterations")

    monkeypatch.setattr(scipy.optimize, "brentq", no_root)
    localizer = make_builder().set_algorithm(AlgorithmId.DEM_MARCHING, updater=_hills()).build()
    with pytest.raises(DemNonConvergenceError) as info:
        localizer.direct_location("nadir", 0.0, 5.0)
    assert "k_lo" in info.value.context


class ShiftNorth(AtmosphericRefraction):
    def __init__(self, shift: float) -> None:
        self.shift = shift
        self.calls = []

    def apply_correction(self, position, los, raw_intersection, algorithm, ellipsoid):
        self.calls.append((position, los, algorithm))
        return NormalizedGeodeticPoint(
            raw_intersection.latitude + self.shift,
            raw_intersection.longitude,
            raw_intersection.altitude,
            raw_intersection.central_longitude,
        )


def test_refraction_corrects_direct_location(make_builder):
    raw = make_builder().build()
    refraction = ShiftNorth(1e-6)
    localizer = make_builder().set_refraction(refraction).build()
    assert localizer.refraction is refraction

    gp = localizer.direct_location("nadir", 40.0, 3.0)
    expected = raw.direct_location("nadir", 40.0, 3.0)
    assert gp.latitude == pytest.approx(expected.latitude + 1e-6, abs=1e-12)
    assert gp.longitude == pytest.approx(expected.longitude, abs=1e-12)

    points = localizer.direct_localization("nadir", 40.0)
    assert len(refraction.calls) == 1 + NB_PIXELS
    assert points[3].latitude == pytest.approx(gp.latitude, abs=1e-12)

    position, los, algorithm = refraction.calls[0]
    assert np.linalg.norm(position) > 7e6
    assert np.linalg.norm(los) == pytest.approx(1.0)
    assert algorithm is localizer.algorithm


def test_distance_derivatives_of_rays_sharing_an_origin(nadir_localizer):
    sensor = nadir_localizer.get_line_sensor("nadir")
    roll = sensor.parameters_drivers()[0]
    roll.selected = True
    date = sensor.get_date(0.0)
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        distance, altitude = nadir_localizer.distance_between_los_derivatives(
            "nadir", date, 3.0, "nadir", date, 7.0, DerivativeGenerator(sensor.parameters_drivers())
        )
    assert distance.value == pytest.approx(0.0, abs=1e-6)
    assert np.all(np.isfinite(distance.grad))
    assert np.all(np.isfinite(altitude.grad))
