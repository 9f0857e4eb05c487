from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable


@dataclass(eq=False)
class ParameterDriver:
    """
    Named scalar of the geometric model.

    Estimation works on the normalized value `(value - reference) / scale`.
    Drivers are owned by the sensor model; the calibration model function is
    the only other writer, and only between two evaluations.
    """

    name: str
    reference_value: float
    scale: float
    min_value: float = -math.inf
    max_value: float = math.inf
    selected: bool = False
    value: float = field(default=math.nan)

    def __post_init__(self) -> None:
        if not self.scale or not math.isfinite(self.scale):
            raise ValueError(f"parameter {self.name!r} scale must be finite and non-zero")
        if self.min_value > self.max_value:
            raise ValueError(f"parameter {self.name!r} has min > max")
        if math.isnan(self.value):
            self.value = float(self.reference_value)
        self.value = self._clip(self.value)

    def _clip(self, v: float) -> float:
        return float(min(max(v, self.min_value), self.max_value))

    def set_value(self, v: float) -> None:
        self.value = self._clip(float(v))

    @property
    def normalized_value(self) -> float:
        return (self.value - self.reference_value) / self.scale

    def set_normalized_value(self, v: float) -> None:
        self.set_value(self.reference_value + self.scale * float(v))

    @property
    def normalized_bounds(self) -> tuple[float, float]:
        lo = (self.min_value - self.reference_value) / self.scale
        hi = (self.max_value - self.reference_value) / self.scale
        return (min(lo, hi), max(lo, hi))


class ParameterDriversList:
    """
    Ordered collection of drivers, one entry per name.

    A driver registered under a name already known is bound to the first one:
    the name is selected as soon as one of its drivers is, and values written
    through the list reach every bound driver.
    """

    def __init__(self, drivers: Iterable[ParameterDriver] = ()) -> None:
        self._bound: dict[str, list[ParameterDriver]] = {}
        for d in drivers:
            self.add(d)

    def add(self, driver: ParameterDriver) -> None:
        bound = self._bound.setdefault(driver.name, [])
        if not any(d is driver for d in bound):
            bound.append(driver)

    def find_by_name(self, name: str) -> ParameterDriver | None:
        bound = self._bound.get(name)
        return bound[0] if bound else None

    def bound_drivers(self, name: str) -> list[ParameterDriver]:
        return list(self._bound.get(name, ()))

    def get_drivers(self) -> list[ParameterDriver]:
        return [bound[0] for bound in self._bound.values()]

    def selected(self) -> list[ParameterDriver]:
        result = []
        for bound in self._bound.values():
            if any(d.selected for d in bound):
                for d in bound:
                    d.selected = True
                result.append(bound[0])
        return result

    def set_normalized_value(self, name: str, v: float) -> None:
        first, *others = self._bound[name]
        first.set_normalized_value(v)
        for d in others:
            d.set_value(first.value)

    def __len__(self) -> int:
        return len(self._bound)

    def __iter__(self):
        return iter(self.get_drivers())
