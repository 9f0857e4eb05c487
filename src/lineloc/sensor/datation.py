from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

from lineloc.errors import ConfigurationError


class LineDatation(ABC):
    """Strictly increasing map between line numbers and dates."""

    @abstractmethod
    def get_date(self, line: float) -> float:
        ...

    @abstractmethod
    def get_rate(self, line: float) -> float:
        """Lines per second at `line`."""

    def get_line(self, date: float, *, max_iter: int = 100) -> float:
        """
        Inverse of `get_date`: bracket the date by expanding steps from line 0,
        then refine with Brent's method.
        """
        from scipy.optimize import brentq  # type: ignore

        lo, hi = -1.0, 1.0
        step = 1.0
        for _ in range(max_iter):
            if self.get_date(lo) <= date <= self.get_date(hi):
                break
            step *= 2.0
            if self.get_date(lo) > date:
                lo -= step
            if self.get_date(hi) < date:
                hi += step
        else:
            raise ConfigurationError("cannot bracket date", date=date)
        return float(brentq(lambda x: self.get_date(x) - date, lo, hi, xtol=1e-12, maxiter=max_iter))


class LinearLineDatation(LineDatation):
    def __init__(self, reference_date: float, reference_line: float, rate: float) -> None:
        if rate <= 0.0:
            raise ValueError("line rate must be > 0")
        self.reference_date = float(reference_date)
        self.reference_line = float(reference_line)
        self.rate = float(rate)

    def get_date(self, line: float) -> float:
        return self.reference_date + (float(line) - self.reference_line) / self.rate

    def get_line(self, date: float, *, max_iter: int = 100) -> float:
        return self.reference_line + self.rate * (float(date) - self.reference_date)

    def get_rate(self, line: float) -> float:
        return self.rate


class TabulatedLineDatation(LineDatation):
    """Piecewise linear datation from (line, date) samples, extrapolated on the end segments."""

    def __init__(self, lines: np.ndarray, dates: np.ndarray) -> None:
        lines = np.asarray(lines, dtype=np.float64).reshape(-1)
        dates = np.asarray(dates, dtype=np.float64).reshape(-1)
        if lines.size < 2 or lines.size != dates.size:
            raise ValueError("need at least two (line, date) samples of matching sizes")
        if np.any(np.diff(lines) <= 0.0) or np.any(np.diff(dates) <= 0.0):
            raise ValueError("lines and dates must be strictly increasing")
        self.lines = lines
        self.dates = dates

    def _segment(self, line: float) -> int:
        i = int(np.searchsorted(self.lines, line, side="right")) - 1
        return min(max(i, 0), self.lines.size - 2)

    def get_date(self, line: float) -> float:
        i = self._segment(float(line))
        t = (float(line) - self.lines[i]) / (self.lines[i + 1] - self.lines[i])
        return float(self.dates[i] + t * (self.dates[i + 1] - self.dates[i]))

    def get_rate(self, line: float) -> float:
        i = self._segment(float(line))
        return float((self.lines[i + 1] - self.lines[i]) / (self.dates[i + 1] - self.dates[i]))
