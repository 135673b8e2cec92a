"""Equality-constrained least-squares fitter.

Measured variables `x` with uncertainties `sigma` are adjusted to

    minimise  chi2 = sum(((x - x0) / sigma) ** 2)
    subject   g(x, u) = 0

where `u` are unmeasured (free) variables. Each iteration solves the
linearised Lagrange system

    | W   0   A^T | |x |   | W x0          |
    | 0   0   B^T | |u | = | 0             |
    | A   B   0   | |l |   | A xk + B uk - g |

with `A = dg/dx`, `B = dg/du` from central differences. Components with a
zero sigma are held fixed. Unmeasured variables may carry limits: a solution
outside them pins the variable to the limit for that iteration. The step is
halved while it makes the largest constraint residual grow. Values are passed
in per fit and the fitted values are returned in the result; the fitter never
keeps references to caller data.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Mapping, Sequence

import numpy as np
from scipy import stats

from .exceptions import ConfigurationError, KinematicDomainError

logger = logging.getLogger(__name__)

ConstraintFn = Callable[[list[list[float]]], object]


class FitStatus(enum.Enum):
    """Outcome of one fit; only `SUCCESS` carries usable fitted values."""

    SUCCESS = "Success"
    NO_CONVERGENCE = "NoConvergence"
    SINGULAR_MATRIX = "SingularMatrix"
    NO_DEGREES_OF_FREEDOM = "NoDegreesOfFreedom"
    KINEMATIC_DOMAIN = "KinematicDomain"


@dataclass
class FitSettings:
    """Iteration controls."""

    max_iterations: int = 50
    constraint_accuracy: float = 1e-5
    chi2_accuracy: float = 1e-4
    derivative_step: float = 1e-5
    max_step_halvings: int = 10


@dataclass(frozen=True)
class BeforeAfter:
    before: float
    after: float


@dataclass(frozen=True)
class FitVariable:
    """Per-component fit outcome."""

    value: BeforeAfter
    sigma: BeforeAfter
    pull: float


@dataclass(frozen=True)
class FitResult:
    """Outcome of one `KinematicFitter.do_fit` call."""

    status: FitStatus
    chi_square: float
    ndof: int
    probability: float
    n_iterations: int
    variables: dict[str, FitVariable] = field(default_factory=dict)
    components: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status is FitStatus.SUCCESS

    def after(self, name: str) -> tuple[float, ...]:
        """Fitted values of one linked variable, in component order."""
        return tuple(self.variables[c].value.after for c in self.components[name])

    def before(self, name: str) -> tuple[float, ...]:
        """Input values of one linked variable, in component order."""
        return tuple(self.variables[c].value.before for c in self.components[name])


@dataclass(frozen=True)
class _Variable:
    name: str
    labels: tuple[str, ...]
    measured: bool
    default: float = 0.0
    limits: tuple[float, float] | None = None

    @property
    def component_names(self) -> tuple[str, ...]:
        if not self.measured and len(self.labels) == 1:
            return (self.name,)
        return tuple(f"{self.name}.{label}" for label in self.labels)


@dataclass(frozen=True)
class _Constraint:
    name: str
    variable_names: tuple[str, ...]
    fn: ConstraintFn


class KinematicFitter:
    """Register variables and constraints once, then fit event after event."""

    def __init__(self, name: str = "KinematicFitter", settings: FitSettings | None = None):
        self.name = name
        self.settings = settings or FitSettings()
        self._variables: list[_Variable] = []
        self._constraints: list[_Constraint] = []

    def link_variable(self, name: str, labels: Sequence[str]) -> None:
        """Declare a measured variable; its values and sigmas come with each fit."""
        if not labels:
            raise ConfigurationError(f"Variable '{name}' needs at least one component.")
        self._add_variable(_Variable(name=name, labels=tuple(labels), measured=True))

    def add_unmeasured_variable(
        self, name: str, default: float = 0.0, limits: tuple[float, float] | None = None
    ) -> None:
        """Declare a free scalar without prior uncertainty, started at `default`.

        With `limits=(low, high)` the fitted value never leaves that interval.
        """
        if limits is not None:
            low, high = limits
            if not low < high:
                raise ConfigurationError(f"Limits of '{name}' must be increasing.")
            if not low <= default <= high:
                raise ConfigurationError(f"Start value of '{name}' lies outside its limits.")
            limits = (float(low), float(high))
        self._add_variable(
            _Variable(name=name, labels=(name,), measured=False, default=default, limits=limits)
        )

    def add_constraint(
        self, constraint: ConstraintFn, variable_names: Sequence[str], name: str | None = None
    ) -> None:
        """Register a residual function over the named variables (in that order)."""
        known = {v.name for v in self._variables}
        missing = [n for n in variable_names if n not in known]
        if missing:
            raise ConfigurationError(
                f"Constraint refers to unknown variables: {', '.join(missing)}"
            )
        cname = name or getattr(constraint, "name", None) or f"Constraint{len(self._constraints)}"
        if cname in {c.name for c in self._constraints}:
            raise ConfigurationError(f"Constraint '{cname}' is already registered.")
        self._constraints.append(_Constraint(cname, tuple(variable_names), constraint))

    def variable_names(self) -> list[str]:
        """All fit component names, in registration order."""
        return [c for v in self._variables for c in v.component_names]

    def constraint_names(self) -> list[str]:
        return [c.name for c in self._constraints]

    def do_fit(
        self,
        values: Mapping[str, Sequence[float]],
        sigmas: Mapping[str, Sequence[float]],
    ) -> FitResult:
        """Fit one set of measurements.

        `values`/`sigmas` map every linked (measured) variable name to its
        components. Unmeasured variables start at their default.
        """
        if not self._constraints:
            raise ConfigurationError("No constraints registered.")
        x0, s0, measured = self._flatten(values, sigmas)
        fixed = measured & (s0 <= 0.0)
        free_m = np.flatnonzero(measured & ~fixed)
        free_u = np.flatnonzero(~measured)
        weights = np.zeros_like(s0)
        weights[free_m] = 1.0 / s0[free_m] ** 2

        x = x0.copy()
        status = FitStatus.NO_CONVERGENCE
        n_iter = 0
        chi2 = 0.0
        kkt = None
        try:
            g = self._residuals(x)
            ndof = g.size - free_u.size
            if ndof <= 0:
                return self._result(FitStatus.NO_DEGREES_OF_FREEDOM, x0, x, s0, None, 0.0, ndof, 0, free_m, free_u)
            if free_m.size == 0:
                # nothing measured may move: chi2 stays 0, only u is solved
                status, n_iter = self._solve_unmeasured(x, g, free_u, s0)
                return self._result(status, x0, x, s0, None, 0.0, ndof, n_iter, free_m, free_u)

            chi2_prev = math.inf
            free = np.concatenate([free_m, free_u])
            n_m = free_m.size
            low, high = self._limits()
            for n_iter in range(1, self.settings.max_iterations + 1):
                jac = self._jacobian(x, g, free, s0)
                try:
                    step = self._newton_step(x, x0, g, jac, weights[free_m], free, n_m, low, high)
                except np.linalg.LinAlgError:
                    status = FitStatus.SINGULAR_MATRIX
                    break
                x, g = self._damped_update(x, g, free, step)
                delta = x[free_m] - x0[free_m]
                chi2 = float(np.sum(weights[free_m] * delta * delta))
                if not np.all(np.isfinite(g)) or not math.isfinite(chi2):
                    status = FitStatus.NO_CONVERGENCE
                    break
                if self._satisfied(g) and abs(chi2 - chi2_prev) < self.settings.chi2_accuracy:
                    status = FitStatus.SUCCESS
                    kkt = self._kkt_matrix(weights[free_m], self._jacobian(x, g, free, s0), n_m)
                    break
                chi2_prev = chi2
        except KinematicDomainError as exc:
            logger.debug("%s: constraint left the physical region: %s", self.name, exc)
            return self._result(FitStatus.KINEMATIC_DOMAIN, x0, x, s0, None, chi2, 0, n_iter, free_m, free_u)

        return self._result(status, x0, x, s0, kkt, chi2, ndof, n_iter, free_m, free_u)

    def _newton_step(self, x, x0, g, jac, w_free, free, n_m, low, high) -> np.ndarray:
        """Step of the free components from the linearised Lagrange system.

        Unmeasured components that would leave their limits are pinned to the
        limit and the system is solved again without them.
        """
        step = np.zeros(free.size)
        active = np.ones(free.size, dtype=bool)
        x_free = x[free]
        while True:
            cols = np.flatnonzero(active)
            kkt = self._kkt_matrix(w_free, jac[:, cols], n_m)
            rhs = np.concatenate(
                [
                    w_free * (x0[free[:n_m]] - x_free[:n_m]),
                    np.zeros(cols.size - n_m),
                    -g - jac[:, ~active] @ step[~active],
                ]
            )
            step[cols] = np.linalg.solve(kkt, rhs)[: cols.size]
            proposed = x_free + step
            outside = active & ((proposed < low[free]) | (proposed > high[free]))
            if not np.any(outside):
                return step
            step[outside] = np.clip(proposed[outside], low[free][outside], high[free][outside]) - x_free[outside]
            active &= ~outside

    def _damped_update(self, x, g, free, step):
        """Apply `step`, halving it while the largest residual grows.

        When no trial length improves on the current residual, the best trial
        is taken.
        """
        current = float(np.max(np.abs(g)))
        accept = max(current, self.settings.constraint_accuracy)
        best = None
        domain_error = None
        scale = 1.0
        for _ in range(self.settings.max_step_halvings + 1):
            trial = x.copy()
            trial[free] += scale * step
            scale *= 0.5
            try:
                g_trial = self._residuals(trial)
            except KinematicDomainError as exc:
                domain_error = exc
                continue
            norm = float(np.max(np.abs(g_trial)))
            if not math.isfinite(norm):
                continue
            if norm <= accept:
                return trial, g_trial
            if best is None or norm < best[2]:
                best = (trial, g_trial, norm)
        if best is not None:
            return best[0], best[1]
        if domain_error is not None:
            raise domain_error
        # every trial was non-finite; the caller reports no convergence
        trial = x.copy()
        trial[free] += step
        return trial, np.full_like(g, np.nan)

    def _solve_unmeasured(self, x, g, free_u, s0) -> tuple[FitStatus, int]:
        """Gauss-Newton on `g(u) = 0` with every measured component fixed; updates `x`."""
        if self._satisfied(g):
            return FitStatus.SUCCESS, 0
        if free_u.size == 0:
            return FitStatus.NO_CONVERGENCE, 0
        low, high = self._limits()
        n_iter = 0
        for n_iter in range(1, self.settings.max_iterations + 1):
            jac = self._jacobian(x, g, free_u, s0)
            step = np.linalg.lstsq(jac, -g, rcond=None)[0]
            x[free_u] = np.clip(x[free_u] + step, low[free_u], high[free_u])
            g = self._residuals(x)
            if not np.all(np.isfinite(g)):
                return FitStatus.NO_CONVERGENCE, n_iter
            if self._satisfied(g):
                return FitStatus.SUCCESS, n_iter
            if np.allclose(step, 0.0, atol=1e-12):
                break
        return FitStatus.NO_CONVERGENCE, n_iter

    def _limits(self) -> tuple[np.ndarray, np.ndarray]:
        """Lower and upper bound of every component; unbounded when no limits are set."""
        low: list[float] = []
        high: list[float] = []
        for var in self._variables:
            lo, hi = var.limits if var.limits is not None else (-math.inf, math.inf)
            low.extend([lo] * len(var.labels))
            high.extend([hi] * len(var.labels))
        return np.asarray(low, dtype=float), np.asarray(high, dtype=float)

    def _add_variable(self, variable: _Variable) -> None:
        if variable.name in {v.name for v in self._variables}:
            raise ConfigurationError(f"Variable '{variable.name}' is already registered.")
        self._variables.append(variable)

    def _flatten(self, values, sigmas):
        """Pack per-variable inputs into flat arrays in registration order."""
        x0: list[float] = []
        s0: list[float] = []
        measured: list[bool] = []
        for var in self._variables:
            n = len(var.labels)
            if not var.measured:
                x0.append(var.default)
                s0.append(0.0)
                measured.append(False)
                continue
            try:
                vals = [float(v) for v in values[var.name]]
                sigs = [float(s) for s in sigmas[var.name]]
            except KeyError as exc:
                raise ConfigurationError(f"No input given for variable '{var.name}'.") from exc
            if len(vals) != n or len(sigs) != n:
                raise ConfigurationError(
                    f"Variable '{var.name}' expects {n} components, got {len(vals)} values and {len(sigs)} sigmas."
                )
            if any(s < 0.0 for s in sigs):
                raise ValueError(f"Negative sigma for variable '{var.name}'.")
            x0.extend(vals)
            s0.extend(sigs)
            measured.extend([True] * n)
        return np.asarray(x0, dtype=float), np.asarray(s0, dtype=float), np.asarray(measured, dtype=bool)

    def _offsets(self) -> dict[str, slice]:
        out: dict[str, slice] = {}
        start = 0
        for var in self._variables:
            out[var.name] = slice(start, start + len(var.labels))
            start += len(var.labels)
        return out

    def _residuals(self, x: np.ndarray) -> np.ndarray:
        """Evaluate all constraints; every call gets fresh lists."""
        offsets = self._offsets()
        parts = []
        for c in self._constraints:
            args = [x[offsets[n]].tolist() for n in c.variable_names]
            parts.append(np.atleast_1d(np.asarray(c.fn(args), dtype=float)).ravel())
        return np.concatenate(parts)

    def _jacobian(self, x: np.ndarray, g: np.ndarray, free: np.ndarray, s0: np.ndarray) -> np.ndarray:
        """Central-difference derivatives of all residuals w.r.t. the free components."""
        jac = np.empty((g.size, free.size))
        for col, idx in enumerate(free):
            scale = s0[idx] if s0[idx] > 0.0 else max(1.0, abs(x[idx]))
            h = self.settings.derivative_step * scale
            xp = x.copy()
            xm = x.copy()
            xp[idx] += h
            xm[idx] -= h
            jac[:, col] = (self._residuals(xp) - self._residuals(xm)) / (2.0 * h)
        return jac

    @staticmethod
    def _kkt_matrix(w_free: np.ndarray, jac: np.ndarray, n_m: int) -> np.ndarray:
        n_free = jac.shape[1]
        n_c = jac.shape[0]
        kkt = np.zeros((n_free + n_c, n_free + n_c))
        kkt[:n_m, :n_m] = np.diag(w_free)
        kkt[:n_free, n_free:] = jac.T
        kkt[n_free:, :n_free] = jac
        return kkt

    def _satisfied(self, g: np.ndarray) -> bool:
        return bool(np.all(np.abs(g) < self.settings.constraint_accuracy))

    def _result(self, status, x0, x, s0, kkt, chi2, ndof, n_iter, free_m, free_u) -> FitResult:
        """Build the per-component summary, including pulls from the fitted covariance."""
        s_after = s0.copy()
        if kkt is not None:
            try:
                cov = np.linalg.inv(kkt)
            except np.linalg.LinAlgError:
                cov = None
            if cov is not None:
                free = np.concatenate([free_m, free_u])
                diag = np.diag(cov)[: free.size]
                s_after[free] = np.sqrt(np.clip(diag, 0.0, None))

        if status is FitStatus.SUCCESS and ndof > 0:
            probability = float(stats.chi2.sf(chi2, ndof))
        else:
            probability = 0.0 if status is not FitStatus.SUCCESS else 1.0

        variables: dict[str, FitVariable] = {}
        components: dict[str, tuple[str, ...]] = {}
        offsets = self._offsets()
        for var in self._variables:
            names = var.component_names
            components[var.name] = names
            for cname, idx in zip(names, range(offsets[var.name].start, offsets[var.name].stop), strict=True):
                variance_drop = s0[idx] ** 2 - s_after[idx] ** 2
                if var.measured and variance_drop > 1e-12 * max(s0[idx] ** 2, 1e-300):
                    pull = float((x[idx] - x0[idx]) / math.sqrt(variance_drop))
                else:
                    pull = 0.0
                variables[cname] = FitVariable(
                    value=BeforeAfter(float(x0[idx]), float(x[idx])),
                    sigma=BeforeAfter(float(s0[idx]), float(s_after[idx])),
                    pull=pull,
                )
        return FitResult(
            status=status,
            chi_square=float(chi2),
            ndof=int(ndof),
            probability=probability,
            n_iterations=int(n_iter),
            variables=variables,
            components=components,
        )
