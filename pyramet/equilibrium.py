"""
Sequential canopy equilibrium for height-ordered ramet communities.

Species are resolved tallest first. Species i sees the light left over by
species 1..i-1 (L_i) and its equilibrium density y solves the light balance

    L_i * (1 - exp(-k_i*y)) = k_i * u_i * y

i.e. light absorbed by the layer equals light demanded at zero net growth.
The positive root is bracketed analytically by

    ln(L_i/u_i)/k_i  <=  y  <=  L_i/(k_i*u_i)

and refined with Brent's method. Light passed down is L_i*exp(-k_i*y)
(Beer's law).
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from scipy.optimize import brentq

from . import constants as const
from .config import diag_enabled
from .errors import InvalidParameter, RootBracketFailure
from .traits import SpeciesRates

_EPS = float(np.finfo(float).eps)


def light_balance_residual(x: float, light_above: float, u: float, k: float) -> float:
    """f(x) = L*(1 - exp(-k*x)) - k*u*x; its positive root is the equilibrium density."""
    return light_above * (-math.expm1(-k * x)) - k * u * x


def equilibrium_bracket(light_above: float, u: float, k: float) -> tuple[float, float]:
    """Analytic bracket [ln(L/u)/k, L/(k*u)]; only valid for L > u."""
    return math.log(light_above / u) / k, light_above / (k * u)


def solve_species(
    light_above: float,
    u: float,
    k: float,
    *,
    species_id: int | None = None,
    xtol: float = const.ROOT_XTOL,
    rtol: float = const.ROOT_RTOL,
    maxiter: int = const.ROOT_MAXITER,
) -> float:
    """
    Equilibrium density of one species under incident light `light_above`.

    Returns 0.0 without root-finding when u >= light_above (not enough light).
    Raises RootBracketFailure when the bracket shows no sign change, k is
    degenerate, or Brent's method exceeds `maxiter`.
    """
    L = float(light_above)
    u = float(u)
    k = float(k)
    if not (math.isfinite(k) and k > 0.0):
        raise RootBracketFailure("degenerate light-capture coefficient", species_id=species_id,
                                 light_above=L, u=u, k=k)
    if u >= L:
        return 0.0

    lo, hi = equilibrium_bracket(L, u, k)
    f_lo = light_balance_residual(lo, L, u, k)
    f_hi = light_balance_residual(hi, L, u, k)
    if f_hi >= 0.0 and math.exp(-L / u) <= _EPS:
        # f(hi) = -L*exp(-L/u) is below round-off: root and upper bound coincide
        return hi
    if not (math.isfinite(f_lo) and math.isfinite(f_hi)) or f_lo <= 0.0 or f_hi >= 0.0:
        raise RootBracketFailure(
            f"no sign change on [{lo:.6g}, {hi:.6g}] (f={f_lo:.3e}, {f_hi:.3e})",
            species_id=species_id, light_above=L, u=u, k=k,
        )
    try:
        root = brentq(light_balance_residual, lo, hi, args=(L, u, k),
                      xtol=xtol, rtol=rtol, maxiter=maxiter)
    except (RuntimeError, ValueError) as e:
        raise RootBracketFailure(str(e), species_id=species_id, light_above=L, u=u, k=k) from e
    return max(0.0, float(root))


@dataclass(frozen=True)
class CanopyLayer:
    """Equilibrium state of one species' canopy layer."""

    species_id: int
    light_above: float
    u: float
    light_capture: float
    equilibrium_density: float
    light_below: float
    feasible: bool
    bracket_failure: bool = False

    @property
    def light_acquired(self) -> float:
        """Light margin above the requirement, L - u."""
        return self.light_above - self.u

    @property
    def light_absorbed(self) -> float:
        return self.light_above - self.light_below

    @property
    def light_per_ramet(self) -> float | None:
        """L / y; undefined (None) for an absent species."""
        if self.equilibrium_density <= 0.0:
            return None
        return self.light_above / self.equilibrium_density


@dataclass(frozen=True)
class CanopyEquilibrium:
    layers: tuple[CanopyLayer, ...]
    light_above_total: float
    failures: tuple[RootBracketFailure, ...] = ()

    def __len__(self) -> int:
        return len(self.layers)

    @property
    def species_id(self) -> np.ndarray:
        return np.array([ly.species_id for ly in self.layers], dtype=int)

    @property
    def densities(self) -> np.ndarray:
        """Equilibrium densities in canopy order (tallest first)."""
        return np.array([ly.equilibrium_density for ly in self.layers], dtype=float)

    @property
    def light_profile(self) -> np.ndarray:
        """Light at the top of every layer plus the light reaching the ground."""
        prof = [ly.light_above for ly in self.layers]
        prof.append(self.layers[-1].light_below if self.layers else self.light_above_total)
        return np.asarray(prof, dtype=float)

    @property
    def feasible(self) -> np.ndarray:
        return np.array([ly.feasible for ly in self.layers], dtype=bool)

    @property
    def richness(self) -> int:
        return int(np.count_nonzero(self.feasible))

    def to_frame(self):
        """One row per species, canopy order."""
        import pandas as pd

        rows = []
        for ly in self.layers:
            lpr = ly.light_per_ramet
            rows.append(
                {
                    "species_id": ly.species_id,
                    "light_above": ly.light_above,
                    "u": ly.u,
                    "equilibrium_density": ly.equilibrium_density,
                    "light_below": ly.light_below,
                    "feasible": ly.feasible,
                    "light_acquired": ly.light_acquired,
                    "light_per_ramet": np.nan if lpr is None else lpr,
                    "light_absorbed": ly.light_absorbed,
                    "bracket_failure": ly.bracket_failure,
                }
            )
        return pd.DataFrame(rows)


def calculate_equilibrium(
    u: Sequence[float],
    k: Sequence[float] | float,
    light_above_total: float = const.LIGHT_TOTAL,
    *,
    species_id: Sequence[int] | None = None,
    diag: bool | None = None,
) -> CanopyEquilibrium:
    """
    Fold over species (already tallest first), carrying the light reaching the
    next layer down.

    A RootBracketFailure for one species marks it absent (density 0, light
    passed through unchanged), is kept in `failures` and the fold continues.
    """
    uu = np.atleast_1d(np.asarray(u, dtype=float)).ravel()
    n = uu.shape[0]
    if n == 0:
        raise InvalidParameter("community must contain at least one species")
    if not np.all(np.isfinite(uu)) or np.any(uu <= 0.0):
        raise InvalidParameter("light requirements must be finite and > 0")
    kk = np.atleast_1d(np.asarray(k, dtype=float)).ravel()
    if kk.shape[0] == 1 and n > 1:
        kk = np.full((n,), kk[0], dtype=float)
    if kk.shape[0] != n:
        raise InvalidParameter(f"k has {kk.shape[0]} entries, expected {n}")
    L0 = float(light_above_total)
    if not math.isfinite(L0) or L0 <= 0.0:
        raise InvalidParameter(f"light_above_total must be finite and > 0, got {L0!r}")
    ids = np.arange(n) if species_id is None else np.asarray(species_id, dtype=int).ravel()
    if ids.shape[0] != n:
        raise InvalidParameter(f"species_id has {ids.shape[0]} entries, expected {n}")
    show = diag_enabled(diag)

    layers: list[CanopyLayer] = []
    failures: list[RootBracketFailure] = []
    light = L0
    for i in range(n):
        sid = int(ids[i])
        failed = False
        try:
            y = solve_species(light, uu[i], kk[i], species_id=sid)
        except RootBracketFailure as e:
            failures.append(e)
            failed = True
            y = 0.0
            if show:
                print(f"[Canopy] {e}; treated as absent")
        below = light * math.exp(-kk[i] * y) if y > 0.0 else light
        layers.append(
            CanopyLayer(
                species_id=sid,
                light_above=light,
                u=float(uu[i]),
                light_capture=float(kk[i]),
                equilibrium_density=y,
                light_below=below,
                feasible=y >= const.FEASIBLE_DENSITY_MIN,
                bracket_failure=failed,
            )
        )
        light = below

    if show:
        print(
            f"[Canopy] S={n} richness={sum(ly.feasible for ly in layers)} "
            f"ground_light={light:.3e} failures={len(failures)}"
        )
    return CanopyEquilibrium(layers=tuple(layers), light_above_total=L0, failures=tuple(failures))


def equilibrium_from_rates(rates: SpeciesRates, *, diag: bool | None = None) -> CanopyEquilibrium:
    return calculate_equilibrium(
        rates.u,
        rates.light_capture,
        rates.light_above_total,
        species_id=rates.species_id,
        diag=diag,
    )


__all__ = [
    "light_balance_residual",
    "equilibrium_bracket",
    "solve_species",
    "CanopyLayer",
    "CanopyEquilibrium",
    "calculate_equilibrium",
    "equilibrium_from_rates",
]
