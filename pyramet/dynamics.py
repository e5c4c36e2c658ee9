from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass

import numpy as np
from scipy.integrate import solve_ivp

from . import constants as const
from .config import diag_enabled
from .equilibrium import CanopyEquilibrium
from .errors import IntegrationDivergence, InvalidParameter
from .traits import SpeciesRates


def ramet_derivatives(
    t: float,
    y: np.ndarray,
    fecundity: np.ndarray,
    mortality: np.ndarray,
    k: np.ndarray,
    light_above_total: float = const.LIGHT_TOTAL,
) -> np.ndarray:
    """
    dy_i/dt = L0 * f_i * exp(-Σ_{j<i} k_j*y_j) * (1 - exp(-k_i*y_i)) - m_i*y_i

    y is in canopy order (tallest first). The attenuation term is the light
    reaching layer i through all taller layers (Beer's law per layer); with a
    shared k it reduces to exp(-k * Σ_{j<i} y_j).
    """
    y = np.asarray(y, dtype=float)
    depth = k * y
    taller = np.cumsum(depth) - depth
    light = light_above_total * np.exp(-taller)
    return light * fecundity * (-np.expm1(-k * y)) - mortality * y


@dataclass(frozen=True, eq=False)
class Trajectory:
    """
    Density time series from simulate_ramets.

    t: [n] sample times
    y: [S, n] densities, rows in canopy order
    species_id: [S] input index of each row
    """

    t: np.ndarray
    y: np.ndarray
    species_id: np.ndarray

    @property
    def final_state(self) -> np.ndarray:
        return self.y[:, -1].copy()

    def samples(self) -> Iterator[tuple[float, np.ndarray]]:
        """One-shot generator of (time, density_vector)."""
        for j in range(self.t.shape[0]):
            yield float(self.t[j]), self.y[:, j].copy()

    def to_frame(self):
        import pandas as pd

        data = {"time": self.t}
        for row, sid in enumerate(self.species_id):
            data[f"species_{int(sid)}"] = self.y[row]
        return pd.DataFrame(data)


def _initial_state(y0, n: int) -> np.ndarray:
    arr = np.atleast_1d(np.asarray(y0, dtype=float)).ravel()
    if arr.shape[0] == 1 and n > 1:
        arr = np.full((n,), arr[0], dtype=float)
    if arr.shape[0] != n:
        raise InvalidParameter(f"initial densities have {arr.shape[0]} entries, expected {n}")
    if not np.all(np.isfinite(arr)) or np.any(arr <= 0.0):
        raise InvalidParameter("initial densities must be finite and > 0")
    return arr


def simulate_ramets(
    rates: SpeciesRates,
    y0: Sequence[float] | float,
    t_span: tuple[float, float],
    *,
    t_eval: Sequence[float] | None = None,
    n_samples: int = 201,
    method: str = const.ODE_METHOD,
    rtol: float = const.ODE_RTOL,
    atol: float = const.ODE_ATOL,
    diag: bool | None = None,
) -> Trajectory:
    """
    Integrate the coupled ramet dynamics over t_span.

    y0 is given in canopy order (same order as `rates`); a scalar is applied to
    every species. Raises IntegrationDivergence if the solver stops early or a
    density goes negative beyond tolerance.
    """
    n = rates.n_species
    y_init = _initial_state(y0, n)
    t0, t1 = float(t_span[0]), float(t_span[1])
    if not (np.isfinite(t0) and np.isfinite(t1)) or t1 <= t0:
        raise InvalidParameter(f"t_span must be increasing and finite, got {t_span!r}")
    if t_eval is None:
        t_eval = np.linspace(t0, t1, max(2, int(n_samples)))
    else:
        t_eval = np.asarray(t_eval, dtype=float)

    args = (
        rates.fecundity,
        rates.mortality,
        rates.light_capture,
        float(rates.light_above_total),
    )
    sol = solve_ivp(
        ramet_derivatives,
        (t0, t1),
        y_init,
        method=method,
        t_eval=t_eval,
        args=args,
        rtol=rtol,
        atol=atol,
    )
    t_reached = float(sol.t[-1]) if sol.t.size else t0
    if not sol.success:
        raise IntegrationDivergence(f"solver stopped: {sol.message}", t_reached=t_reached)
    y = np.asarray(sol.y, dtype=float)
    floor = -max(10.0 * atol, const.NEGATIVE_DENSITY_TOL)
    if y.size and float(np.min(y)) < floor:
        j = int(np.argmin(np.min(y, axis=0)))
        raise IntegrationDivergence(
            f"negative density {float(np.min(y)):.3e}", t_reached=float(sol.t[j])
        )
    y = np.maximum(y, 0.0)

    if diag_enabled(diag):
        print(
            f"[Dynamics] {method} S={n} t=[{t0:g},{t1:g}] nfev={sol.nfev} "
            f"final_total={float(np.sum(y[:, -1])):.4f}"
        )
    return Trajectory(t=np.asarray(sol.t, dtype=float), y=y, species_id=rates.species_id.copy())


def compare_to_equilibrium(trajectory: Trajectory, equilibrium: CanopyEquilibrium):
    """
    Per-species comparison of the last trajectory sample with the equilibrium.
    Rows are in canopy order; rel_error is NaN where the equilibrium is 0.
    """
    import pandas as pd

    if len(equilibrium) != trajectory.y.shape[0]:
        raise InvalidParameter("trajectory and equilibrium describe different communities")
    final = trajectory.final_state
    eq = equilibrium.densities
    abs_err = np.abs(final - eq)
    with np.errstate(divide="ignore", invalid="ignore"):
        rel_err = np.where(eq > 0.0, abs_err / eq, np.nan)
    return pd.DataFrame(
        {
            "species_id": equilibrium.species_id,
            "final_density": final,
            "equilibrium_density": eq,
            "abs_error": abs_err,
            "rel_error": rel_err,
        }
    )


__all__ = ["ramet_derivatives", "Trajectory", "simulate_ramets", "compare_to_equilibrium"]
