from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

from lineloc.core.ellipsoid import ExtendedEllipsoid, NormalizedGeodeticPoint
from lineloc.intersection.algorithms import IntersectionAlgorithm


class AtmosphericRefraction(ABC):
    """
    Correction of a raw ground intersection for the bending of the line of
    sight through the atmosphere.

    Implementations usually bend `los` and intersect again, either from scratch
    with `ellipsoid.point_at_altitude` or through
    `algorithm.refine_intersection` seeded with the raw point.
    """

    @abstractmethod
    def apply_correction(
        self,
        position: np.ndarray,
        los: np.ndarray,
        raw_intersection: NormalizedGeodeticPoint,
        algorithm: IntersectionAlgorithm,
        ellipsoid: ExtendedEllipsoid,
    ) -> NormalizedGeodeticPoint:
        """`position` and `los` are the body frame ray that produced `raw_intersection`."""
