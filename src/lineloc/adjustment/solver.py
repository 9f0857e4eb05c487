from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from lineloc.adjustment.problem_builder import BuilderState, LeastSquaresProblem
from lineloc.errors import CalibrationError, LineLocError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Optimum:
    """
    Result of a calibration.

    `parameters` are normalized values, `values` the physical driver values
    by name. `covariance` is inv(J^T J) of the weighted problem at the optimum
    (normalized units, unit observation variance).
    """

    parameters: np.ndarray
    values: dict[str, float]
    cost: float
    rms: float
    evaluations: int
    jacobian_evaluations: int
    covariance: np.ndarray
    cost_history: tuple[float, ...]
    converged: bool
    message: str


def solve(problem: LeastSquaresProblem) -> Optimum:
    """
    Bounded trust region reflective solve; the drivers are left at the optimum.

    The problem convergence threshold bounds the relative cost reduction of a
    step (scipy `ftol`). A run stopped by the evaluation budget still counts as
    converged when its last two improvements pass the problem checker.
    """
    from scipy.optimize import least_squares  # type: ignore

    builder = problem.builder
    if builder is not None:
        builder.require_state(BuilderState.FUNCTION_BUILT)
    sqrt_w = np.sqrt(np.asarray(problem.weights, dtype=np.float64))
    history: list[float] = []
    last: dict[str, np.ndarray] = {}

    def evaluate(x: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        x = np.asarray(x, dtype=np.float64)
        if "x" not in last or not np.array_equal(last["x"], x):
            values, jac = problem.model(problem.validator.validate(x))
            last["x"] = x.copy()
            last["values"] = np.asarray(values, dtype=np.float64)
            last["jac"] = np.asarray(jac, dtype=np.float64)
        return last["values"], last["jac"]

    def residuals(x: np.ndarray) -> np.ndarray:
        values, _jac = evaluate(x)
        r = sqrt_w * (values - problem.target)
        history.append(0.5 * float(r @ r))
        return r

    def jacobian(x: np.ndarray) -> np.ndarray:
        _values, jac = evaluate(x)
        return sqrt_w[:, None] * jac

    validator = problem.validator
    bounds = (validator.lower, validator.upper) if validator.bounded else (-np.inf, np.inf)
    try:
        result = least_squares(
            residuals,
            validator.validate(problem.start),
            jac=jacobian,
            bounds=bounds,
            method="trf",
            ftol=problem.checker.threshold,
            max_nfev=problem.max_evaluations,
        )
    except np.linalg.LinAlgError as exc:
        if builder is not None:
            builder.mark_solved(False)
        raise CalibrationError(f"least squares failed: {exc}") from exc
    except LineLocError:
        if builder is not None:
            builder.mark_solved(False)
        raise

    # leave the drivers at the optimum
    problem.model(validator.validate(result.x))

    converged = bool(result.success) or problem.checker.converged_history(history)
    if builder is not None:
        builder.mark_solved(True)

    jtj = result.jac.T @ result.jac
    covariance = np.linalg.pinv(jtj)
    rms = float(np.sqrt(np.mean(result.fun**2))) if result.fun.size else 0.0
    optimum = Optimum(
        parameters=np.asarray(result.x, dtype=np.float64),
        values={d.name: d.value for d in problem.drivers},
        cost=float(result.cost),
        rms=rms,
        evaluations=int(result.nfev),
        jacobian_evaluations=int(result.njev or 0),
        covariance=covariance,
        cost_history=tuple(history),
        converged=converged,
        message=str(result.message),
    )
    logger.info(
        "Calibration %s after [%d] evaluations: cost=[%.6g] rms=[%.6g]",
        "converged" if optimum.converged else "stopped",
        optimum.evaluations,
        optimum.cost,
        optimum.rms,
    )
    return optimum
