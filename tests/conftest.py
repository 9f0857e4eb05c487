from __future__ import annotations

import math

import numpy as np
import pytest

from lineloc.api.builder import LocalizerBuilder
from lineloc.api.localizer import Localizer
from lineloc.core.frames import EARTH_ROTATION_RATE
from lineloc.sensor.datation import LinearLineDatation
from lineloc.sensor.line_sensor import LineSensor
from lineloc.sensor.los import FixedRotation, LOSBuilder

MU = 3.986004418e14
EQUATORIAL_RADIUS = 6378137.0
ORBIT_ALTITUDE = 700e3
LINE_RATE = 100.0
NB_PIXELS = 21
HALF_FOV = 0.02


def _orbit_angle_rate() -> float:
    r = EQUATORIAL_RADIUS + ORBIT_ALTITUDE
    return math.sqrt(MU / r**3)


def trajectory(dates: np.ndarray) -> dict[str, np.ndarray]:
    """
    Circular polar orbit in the inertial x-z plane, spacecraft Z axis towards
    the Earth center and X axis along the velocity.
    """
    r = EQUATORIAL_RADIUS + ORBIT_ALTITUDE
    w = _orbit_angle_rate()
    a = w * dates
    positions = r * np.stack([np.cos(a), np.zeros_like(a), np.sin(a)], axis=1)
    velocities = r * w * np.stack([-np.sin(a), np.zeros_like(a), np.cos(a)], axis=1)
    # spacecraft->inertial is a rotation of phi around +Y
    phi = np.arctan2(-np.cos(a), -np.sin(a))
    quaternions = np.stack(
        [np.cos(0.5 * phi), np.zeros_like(a), np.sin(0.5 * phi), np.zeros_like(a)], axis=1
    )
    return {
        "pv_dates": dates,
        "positions": positions,
        "velocities": velocities,
        "q_dates": dates,
        "quaternions": quaternions,
    }


def raw_los(nb_pixels: int = NB_PIXELS) -> np.ndarray:
    theta = np.linspace(-HALF_FOV, HALF_FOV, nb_pixels)
    return np.stack([np.zeros_like(theta), np.tan(theta), np.ones_like(theta)], axis=1)


def line_sensor(name: str, *, pitch: float = 0.0, nb_pixels: int = NB_PIXELS) -> LineSensor:
    los = (
        LOSBuilder(raw_los(nb_pixels))
        .add_transform(FixedRotation(f"{name}-roll", np.array([1.0, 0.0, 0.0]), 0.0))
        .add_transform(FixedRotation(f"{name}-pitch", np.array([0.0, 1.0, 0.0]), pitch))
        .build()
    )
    return LineSensor(name, LinearLineDatation(0.0, 0.0, LINE_RATE), np.zeros(3), los)


def localizer_builder(
    name: str = "sat",
    *,
    body_rotation_rate: float = EARTH_ROTATION_RATE,
    sensors: tuple[LineSensor, ...] = (),
) -> LocalizerBuilder:
    builder = LocalizerBuilder(name).set_trajectory(
        **trajectory(np.arange(-40.0, 40.0 + 1e-9, 2.0)), body_rotation_rate=body_rotation_rate
    )
    for s in sensors or (line_sensor("nadir"),):
        builder.add_line_sensor(s)
    return builder


@pytest.fixture
def nadir_localizer() -> Localizer:
    return localizer_builder().build()


@pytest.fixture
def stereo_localizer() -> Localizer:
    """One nadir sensor and one sensor looking 0.1 rad forward."""
    return localizer_builder(sensors=(line_sensor("nadir"), line_sensor("forward", pitch=0.1))).build()


@pytest.fixture
def config_dict() -> dict:
    traj = trajectory(np.arange(-40.0, 40.0 + 1e-9, 2.0))
    return {
        "schema_version": "lineloc.config.v0",
        "name": "sat",
        "ellipsoid": "WGS84",
        "algorithm": {"id": "IGNORE_DEM_USE_ELLIPSOID"},
        "orbit": {
            "dates": traj["pv_dates"].tolist(),
            "positions": traj["positions"].tolist(),
            "velocities": traj["velocities"].tolist(),
        },
        "attitude": {"dates": traj["q_dates"].tolist(), "quaternions": traj["quaternions"].tolist()},
        "sensors": [
            {
                "name": "nadir",
                "position": [0.0, 0.0, 0.0],
                "datation": {"reference_date": 0.0, "reference_line": 0.0, "rate": LINE_RATE},
                "los": raw_los().tolist(),
                "transforms": [{"type": "fixed_rotation", "name": "nadir-roll", "axis": [1, 0, 0], "angle": 0.0}],
            }
        ],
    }


@pytest.fixture
def make_sensor():
    return line_sensor


@pytest.fixture
def make_builder():
    return localizer_builder
