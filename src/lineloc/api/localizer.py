from __future__ import annotations

import logging
import math
from typing import Optional

import numpy as np

from lineloc.core.derivatives import DerivativeGenerator, Gradient, GradientVector
from lineloc.core.ellipsoid import ExtendedEllipsoid, GeodeticPoint, NormalizedGeodeticPoint
from lineloc.core.frames import SpacecraftToObservedBody, Transform
from lineloc.core.geometry import as_vector, closest_approach, normalize
from lineloc.errors import InverseLocalizationError, UninitializedContextError, UnknownSensorError
from lineloc.intersection.algorithms import IntersectionAlgorithm
from lineloc.intersection.refraction import AtmosphericRefraction
from lineloc.sensor.line_sensor import LineSensor, SensorPixel

logger = logging.getLogger(__name__)

# Finite difference steps (line, pixel) for the inverse location Jacobian.
_LINE_STEP = 1e-3
_PIXEL_STEP = 1e-3


class Localizer:
    """
    Geolocation context of one satellite: ellipsoid, intersection algorithm,
    orbit/attitude context and the line sensors it carries.

    `name` identifies the localizer in inter-sensor correspondences.
    """

    def __init__(self, name: str = "localizer") -> None:
        self.name = str(name)
        self._ellipsoid: Optional[ExtendedEllipsoid] = None
        self._algorithm: Optional[IntersectionAlgorithm] = None
        self._context: Optional[SpacecraftToObservedBody] = None
        self._sensors: dict[str, LineSensor] = {}
        self.refraction: Optional[AtmosphericRefraction] = None

    def __repr__(self) -> str:
        return f"Localizer(name={self.name!r}, sensors={sorted(self._sensors)!r})"

    # -- configuration -----------------------------------------------------

    def set_general_context(
        self,
        *,
        ellipsoid: ExtendedEllipsoid,
        algorithm: IntersectionAlgorithm,
        context: SpacecraftToObservedBody,
        refraction: Optional[AtmosphericRefraction] = None,
    ) -> None:
        self._ellipsoid = ellipsoid
        self._algorithm = algorithm
        self._context = context
        self.refraction = refraction
        logger.info(
            "Localizer [%s] configured with [%s] over [%s, %s]",
            self.name,
            algorithm.algorithm_id.value,
            context.min_date,
            context.max_date,
        )

    def _check_context(self) -> None:
        if self._ellipsoid is None or self._algorithm is None or self._context is None:
            raise UninitializedContextError(localizer=self.name)

    @property
    def ellipsoid(self) -> ExtendedEllipsoid:
        self._check_context()
        return self._ellipsoid  # type: ignore[return-value]

    @property
    def algorithm(self) -> IntersectionAlgorithm:
        self._check_context()
        return self._algorithm  # type: ignore[return-value]

    @property
    def context(self) -> SpacecraftToObservedBody:
        self._check_context()
        return self._context  # type: ignore[return-value]

    def add_line_sensor(self, sensor: LineSensor) -> None:
        self._sensors[sensor.name] = sensor

    def get_line_sensor(self, sensor_name: str) -> LineSensor:
        sensor = self._sensors.get(sensor_name)
        if sensor is None:
            raise UnknownSensorError(sensor=sensor_name, localizer=self.name)
        return sensor

    @property
    def line_sensors(self) -> list[LineSensor]:
        return list(self._sensors.values())

    def sc_to_body(self, date: float) -> Transform:
        return self.context.sc_to_body(date)

    # -- direct location ---------------------------------------------------

    def direct_location_of_ray(
        self,
        date: float,
        position: np.ndarray,
        los: np.ndarray,
        close_guess: Optional[NormalizedGeodeticPoint] = None,
    ) -> NormalizedGeodeticPoint:
        """Ground point of a ray given in the spacecraft frame at `date`."""
        self._check_context()
        transform = self.context.sc_to_body(date)
        p_body = transform.transform_position(as_vector(position))
        l_body = normalize(transform.transform_vector(as_vector(los)))
        if close_guess is None:
            point = self.algorithm.intersection(self.ellipsoid, p_body, l_body)
        else:
            point = self.algorithm.refine_intersection(self.ellipsoid, p_body, l_body, close_guess)
        return self._refract(p_body, l_body, point)

    def _refract(
        self, p_body: np.ndarray, l_body: np.ndarray, point: NormalizedGeodeticPoint
    ) -> NormalizedGeodeticPoint:
        if self.refraction is None:
            return point
        return self.refraction.apply_correction(p_body, l_body, point, self.algorithm, self.ellipsoid)

    def direct_localization(self, sensor_name: str, line: float) -> list[NormalizedGeodeticPoint]:
        """Ground points of all pixels of one sensor line."""
        self._check_context()
        sensor = self.get_line_sensor(sensor_name)
        date = sensor.get_date(line)
        transform = self.context.sc_to_body(date)
        p_body = transform.transform_position(sensor.position)
        points = []
        for i in range(sensor.nb_pixels):
            l_body = normalize(transform.transform_vector(sensor.get_los(date, i)))
            points.append(self._refract(p_body, l_body, self.algorithm.intersection(self.ellipsoid, p_body, l_body)))
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Direct localization of [%s] line [%s] at date [%s]", sensor_name, line, date)
        return points

    def direct_location(
        self,
        sensor_name: str,
        line: float,
        pixel: float,
        close_guess: Optional[NormalizedGeodeticPoint] = None,
    ) -> NormalizedGeodeticPoint:
        """Ground point of a single, possibly fractional, pixel."""
        self._check_context()
        sensor = self.get_line_sensor(sensor_name)
        date = sensor.get_date(line)
        return self.direct_location_of_ray(date, sensor.position, sensor.get_interpolated_los(date, pixel), close_guess)

    # -- inverse location --------------------------------------------------

    def _sensor_plane(self, sensor: LineSensor, date: float) -> np.ndarray:
        """Mean plane normal of the sensor, spacecraft frame."""
        if sensor.nb_pixels > 1:
            return sensor.mean_plane_normal(date)
        # single pixel: plane holding the LOS and orthogonal to the motion
        los = sensor.get_los(date, 0)
        _pos, vel = self.context.position_velocity(date)
        v_sc = self.context.attitude(date).T @ vel
        return normalize(v_sc - float(v_sc @ los) * los)

    def _plane_crossing(self, sensor: LineSensor, target: np.ndarray, line: float) -> float:
        date = sensor.get_date(line)
        transform = self.context.sc_to_body(date)
        normal = transform.transform_vector(self._sensor_plane(sensor, date))
        d = normalize(target - transform.transform_position(sensor.position))
        return float(normal @ d)

    def _pixel_in_line(self, sensor: LineSensor, date: float, direction: np.ndarray) -> float:
        # in-plane angle of the target, then Newton on the interpolated LOS
        if sensor.nb_pixels == 1:
            return 0.0
        normal = sensor.mean_plane_normal(date)
        l0 = sensor.get_los(date, 0)

        def angle(v: np.ndarray) -> float:
            return math.atan2(float(normal @ np.cross(l0, v)), float(l0 @ v))

        alphas = np.array([angle(v) for v in sensor.all_los(date)], dtype=np.float64)
        beta = angle(direction)
        n = sensor.nb_pixels
        if alphas[-1] >= alphas[0]:
            i = int(np.searchsorted(alphas, beta)) - 1
        else:
            i = n - 1 - int(np.searchsorted(alphas[::-1], beta))
        i = min(max(i, 0), n - 2)
        pixel = i + (beta - alphas[i]) / (alphas[i + 1] - alphas[i])
        for _ in range(5):
            j = min(max(int(math.floor(pixel)), 0), n - 2)
            slope = alphas[j + 1] - alphas[j]
            step = (beta - angle(sensor.get_interpolated_los(date, pixel))) / slope
            pixel += step
            if abs(step) < 1e-12:
                break
        return float(pixel)

    def inverse_localization(
        self,
        sensor_name: str,
        point: GeodeticPoint,
        min_line: float,
        max_line: float,
        *,
        max_evaluations: int = 100,
    ) -> Optional[SensorPixel]:
        """
        Sensor pixel seeing a ground point, searched in [min_line, max_line].

        Returns None when the point is not seen by the sensor in that range.
        """
        from scipy.optimize import brentq  # type: ignore

        self._check_context()
        sensor = self.get_line_sensor(sensor_name)
        target = self.ellipsoid.transform_to_cartesian(point)

        f_min = self._plane_crossing(sensor, target, min_line)
        f_max = self._plane_crossing(sensor, target, max_line)
        if f_min * f_max > 0.0:
            logger.debug("Point %s not seen by [%s] in lines [%s, %s]", point, sensor_name, min_line, max_line)
            return None

        try:
            line = float(
                brentq(
                    lambda x: self._plane_crossing(sensor, target, x),
                    min_line,
                    max_line,
                    xtol=1e-10,
                    maxiter=max_evaluations,
                )
            )
        except RuntimeError as exc:
            raise InverseLocalizationError(
                sensor=sensor_name, min_line=min_line, max_line=max_line, max_evaluations=max_evaluations
            ) from exc

        date = sensor.get_date(line)
        transform = self.context.sc_to_body(date)
        direction = normalize(transform.inverse().transform_vector(target - transform.transform_position(sensor.position)))
        pixel = self._pixel_in_line(sensor, date, direction)
        if pixel < -1.0 or pixel > sensor.nb_pixels:
            logger.debug("Point %s falls outside the pixels of [%s] (pixel=%s)", point, sensor_name, pixel)
            return None
        return SensorPixel(line, pixel)

    def inverse_location_derivatives(
        self,
        sensor_name: str,
        point: GeodeticPoint,
        min_line: float,
        max_line: float,
        generator: DerivativeGenerator,
    ) -> Optional[tuple[Gradient, Gradient]]:
        """
        (line, pixel) of a ground point with derivatives with respect to the
        selected drivers, by implicit differentiation of LOS x direction = 0.
        """
        sp = self.inverse_localization(sensor_name, point, min_line, max_line)
        if sp is None:
            return None
        sensor = self.get_line_sensor(sensor_name)
        target = self.ellipsoid.transform_to_cartesian(point)

        def residual(line: float, pixel: float) -> np.ndarray:
            date = sensor.get_date(line)
            transform = self.context.sc_to_body(date)
            los = transform.transform_vector(sensor.get_interpolated_los(date, pixel))
            d = normalize(target - transform.transform_position(sensor.position))
            return np.cross(los, d)

        line, pixel = sp.line_number, sp.pixel_number
        j_lp = np.stack(
            [
                (residual(line + _LINE_STEP, pixel) - residual(line - _LINE_STEP, pixel)) / (2.0 * _LINE_STEP),
                (residual(line, pixel + _PIXEL_STEP) - residual(line, pixel - _PIXEL_STEP)) / (2.0 * _PIXEL_STEP),
            ],
            axis=1,
        )

        date = sensor.get_date(line)
        transform = self.context.sc_to_body(date)
        d = normalize(target - transform.transform_position(sensor.position))
        los = sensor.get_los_derivatives(date, pixel, generator).rotate(transform.rotation)
        j_theta = los.cross(d).jacobian

        sol, *_ = np.linalg.lstsq(j_lp, -j_theta, rcond=None)
        return Gradient(line, sol[0]), Gradient(pixel, sol[1])

    # -- LOS distances -----------------------------------------------------

    def _body_ray(self, sensor: LineSensor, date: float, pixel: float) -> tuple[np.ndarray, np.ndarray, Transform]:
        transform = self.context.sc_to_body(date)
        return (
            transform.transform_position(sensor.position),
            transform.transform_vector(sensor.get_interpolated_los(date, pixel)),
            transform,
        )

    def distance_between_los(
        self,
        sensor_a: str,
        date_a: float,
        pixel_a: float,
        sensor_b: str,
        date_b: float,
        pixel_b: float,
        *,
        other: Optional["Localizer"] = None,
    ) -> tuple[float, float]:
        """
        Closest approach distance between LOS A (on this localizer) and LOS B
        (on `other`, default this localizer), and the altitude of the middle
        of the closest approach segment above the ellipsoid.
        """
        other = self if other is None else other
        p_a, l_a, _ = self._body_ray(self.get_line_sensor(sensor_a), date_a, pixel_a)
        p_b, l_b, _ = other._body_ray(other.get_line_sensor(sensor_b), date_b, pixel_b)
        midpoint, distance = closest_approach(p_a, l_a, p_b, l_b)
        return distance, self.ellipsoid.transform_to_geodetic(midpoint).altitude

    def distance_between_los_derivatives(
        self,
        sensor_a: str,
        date_a: float,
        pixel_a: float,
        sensor_b: str,
        date_b: float,
        pixel_b: float,
        generator: DerivativeGenerator,
        *,
        other: Optional["Localizer"] = None,
    ) -> tuple[Gradient, Gradient]:
        other = self if other is None else other
        sa = self.get_line_sensor(sensor_a)
        sb = other.get_line_sensor(sensor_b)
        ta = self.sc_to_body(date_a)
        tb = other.sc_to_body(date_b)
        p_a = generator.constant_vector(ta.transform_position(sa.position))
        p_b = generator.constant_vector(tb.transform_position(sb.position))
        l_a = sa.get_los_derivatives(date_a, pixel_a, generator).rotate(ta.rotation)
        l_b = sb.get_los_derivatives(date_b, pixel_b, generator).rotate(tb.rotation)

        # closest approach, same algebra as core.geometry.closest_approach
        w0 = p_a - p_b
        a = l_a.dot(l_a)
        b = l_a.dot(l_b)
        c = l_b.dot(l_b)
        d = l_a.dot(w0)
        e = l_b.dot(w0)
        denom = a * c - b * b
        if abs(denom.value) < 1e-12 * a.value * c.value:
            t_a = generator.constant(0.0)
            t_b = e / c
        else:
            t_a = (b * e - c * d) / denom
            t_b = (a * e - b * d) / denom
        q_a = p_a + l_a.scale(t_a)
        q_b = p_b + l_b.scale(t_b)
        distance = (q_a - q_b).norm()
        midpoint: GradientVector = (q_a + q_b).scale(0.5)
        return distance, self.ellipsoid.altitude_derivatives(midpoint)
