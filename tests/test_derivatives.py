import math
import warnings

import numpy as np
import pytest

from lineloc.core.derivatives import DerivativeGenerator, Gradient, GradientVector
from lineloc.sensor.los import FixedRotation, FixedZHomothety, LOSBuilder, PolynomialRotation
from lineloc.sensor.parameters import ParameterDriver, ParameterDriversList


def _fd(f, x: float, eps: float = 1e-6) -> float:
    return (f(x + eps) - f(x - eps)) / (2 * eps)


def test_gradient_arithmetic_matches_finite_differences():
    def plain(x: float) -> float:
        return math.sqrt(x * x + 1.0) * math.sin(x) / (2.0 + math.cos(x)) - 3.0 / x + (x - 1.0) ** 3

    def dual(x: Gradient) -> Gradient:
        return (x * x + 1.0).sqrt() * x.sin() / (2.0 + x.cos()) - 3.0 / x + (x - 1.0) ** 3

    x0 = 0.7
    g = dual(Gradient(x0, np.array([1.0])))
    assert g.value == pytest.approx(plain(x0))
    assert g.partial(0) == pytest.approx(_fd(plain, x0), rel=1e-7)


def test_gradient_vector_normalize_and_cross():
    v = GradientVector(np.array([1.0, 2.0, 3.0]), np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]]))
    w = np.array([0.5, -1.0, 0.2])

    def plain(t: np.ndarray) -> np.ndarray:
        base = np.array([1.0 + t[0], 2.0 + t[1], 3.0 + t[0] + t[1]])
        return np.cross(base / np.linalg.norm(base), w)

    result = v.normalize().cross(w)
    for i in range(2):
        e = np.zeros(2)
        e[i] = 1e-6
        fd = (plain(e) - plain(-e)) / 2e-6
        assert np.allclose(result.jacobian[:, i], fd, atol=1e-8)
    assert np.allclose(result.value, plain(np.zeros(2)))


def test_generator_only_differentiates_selected_drivers():
    a = ParameterDriver("a", 1.0, 1.0, selected=True)
    b = ParameterDriver("b", 2.0, 1.0)
    gen = DerivativeGenerator([a, b])
    assert gen.n_params == 1
    assert gen.variable(a).grad.tolist() == [1.0]
    assert gen.variable(b).grad.tolist() == [0.0]
    assert gen.variable(b).value == 2.0


def test_parameter_driver_normalization_and_bounds():
    d = ParameterDriver("roll", reference_value=0.1, scale=2.0**-20, min_value=0.0, max_value=0.2)
    d.set_normalized_value(3.0)
    assert d.value == pytest.approx(0.1 + 3.0 * 2.0**-20)
    assert d.normalized_value == pytest.approx(3.0)
    d.set_value(1.0)
    assert d.value == 0.2
    lo, hi = d.normalized_bounds
    assert lo == pytest.approx(-0.1 * 2.0**20)
    assert hi == pytest.approx(0.1 * 2.0**20)
    with pytest.raises(ValueError):
        ParameterDriver("bad", 0.0, 0.0)


def test_drivers_list_binds_drivers_sharing_a_name():
    first = ParameterDriver("x", 0.0, 1.0)
    second = ParameterDriver("x", 5.0, 2.0, selected=True)
    drivers = ParameterDriversList([first, second, ParameterDriver("y", 0.0, 1.0)])
    assert len(drivers) == 2
    assert drivers.find_by_name("x") is first
    assert drivers.find_by_name("z") is None
    assert drivers.bound_drivers("x") == [first, second]

    # one selected driver selects the whole name
    assert drivers.selected() == [first]
    assert first.selected
    drivers.set_normalized_value("x", 3.0)
    assert first.value == second.value == 3.0


def test_generator_shares_one_column_between_bound_drivers():
    a = ParameterDriver("roll", 0.0, 1.0, selected=True)
    b = ParameterDriver("roll", 0.0, 1.0, selected=True)
    gen = DerivativeGenerator([a])
    assert gen.variable(b).grad.tolist() == [1.0]


def test_gradient_norm_at_zero_has_zero_gradient():
    v = GradientVector(np.zeros(3), np.array([[1.0], [2.0], [0.5]]))
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        n = v.norm()
    assert n.value == 0.0
    assert n.grad.tolist() == [0.0]


@pytest.mark.parametrize(
    "transform",
    [
        FixedRotation("roll", np.array([1.0, 0.0, 0.0]), 0.01),
        PolynomialRotation("yaw", np.array([0.0, 0.0, 1.0]), 5.0, [0.002, 1e-4, -2e-6]),
        FixedZHomothety("focal", 1.001),
    ],
)
def test_los_derivatives_match_finite_differences(transform):
    raw = np.array([[0.0, -0.05, 1.0], [0.1, 0.0, 1.0], [0.0, 0.05, 1.0]])
    los = LOSBuilder(raw).add_transform(FixedRotation("pitch", np.array([0.0, 1.0, 0.0]), 0.05)).add_transform(transform).build()
    drivers = transform.parameters_drivers()
    for d in drivers:
        d.selected = True
    gen = DerivativeGenerator(drivers)
    date = 7.5
    dual = los.get_los_derivatives(1, date, gen)
    assert np.allclose(dual.value, los.get_los(1, date), atol=1e-15)
    for i, d in enumerate(drivers):
        v0 = d.value
        eps = 1e-6
        d.set_value(v0 + eps)
        up = los.get_los(1, date)
        d.set_value(v0 - eps)
        down = los.get_los(1, date)
        d.set_value(v0)
        assert np.allclose(dual.jacobian[:, i], (up - down) / (2 * eps), atol=1e-8)
