from __future__ import annotations

from dataclasses import dataclass, field, replace
from collections.abc import Mapping, Sequence

import numpy as np

from . import constants as const
from .config import env_float
from .errors import InfeasibleTrait, InvalidParameter


def _positive(name: str, value: float) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidParameter(f"{name} must be a number, got {value!r}") from e
    if not np.isfinite(v) or v <= 0.0:
        raise InvalidParameter(f"{name} must be finite and > 0, got {v!r}")
    return v


def _as_vector(name: str, values, *, n: int | None = None) -> np.ndarray:
    arr = np.atleast_1d(np.asarray(values, dtype=float)).ravel()
    if arr.size == 0:
        raise InvalidParameter(f"{name} must contain at least one species")
    if n is not None and arr.shape[0] != n:
        raise InvalidParameter(f"{name} has {arr.shape[0]} entries, expected {n}")
    if not np.all(np.isfinite(arr)):
        raise InvalidParameter(f"{name} contains non-finite values")
    return arr


@dataclass(frozen=True)
class ModelParams:
    """
    Species-generic physiological constants.

    Fields:
    - a: photosynthetic rate
    - r: respiration rate
    - b: biomass density coefficient (biomass = b * height^beta)
    - beta: allometric exponent
    - m: baseline mortality
    - k: light-capture coefficient, scalar or one value per species
    """

    a: float = const.A_PHOTO
    r: float = const.R_RESP
    b: float = const.B_BIOMASS
    beta: float = const.BETA_ALLOM
    m: float = const.M_BASE
    k: float | tuple[float, ...] = const.K_CAPTURE

    def __post_init__(self) -> None:
        for name in ("a", "r", "b", "beta", "m"):
            object.__setattr__(self, name, _positive(name, getattr(self, name)))
        if np.ndim(self.k) == 0:
            object.__setattr__(self, "k", _positive("k", self.k))
        else:
            ks = tuple(_positive(f"k[{i}]", v) for i, v in enumerate(np.ravel(self.k)))
            if not ks:
                raise InvalidParameter("k override must contain at least one value")
            object.__setattr__(self, "k", ks)

    @classmethod
    def from_mapping(cls, values: Mapping[str, object]) -> ModelParams:
        """Build from a {name: value} mapping; `k` may be a per-species sequence."""
        known = {"a", "r", "b", "beta", "m", "k"}
        unknown = set(values) - known
        if unknown:
            raise InvalidParameter(f"unknown parameter(s): {sorted(unknown)}")
        kwargs = dict(values)
        if "k" in kwargs and np.ndim(kwargs["k"]) > 0:
            kwargs["k"] = tuple(np.ravel(kwargs["k"]))
        return cls(**kwargs)

    @classmethod
    def from_env(cls) -> ModelParams:
        return cls(
            a=env_float("A", const.A_PHOTO),
            r=env_float("R", const.R_RESP),
            b=env_float("B", const.B_BIOMASS),
            beta=env_float("BETA", const.BETA_ALLOM),
            m=env_float("M", const.M_BASE),
            k=env_float("K", const.K_CAPTURE),
        )

    def capture_vector(self, n: int) -> np.ndarray:
        """Per-species light-capture coefficients for a community of n species."""
        if np.ndim(self.k) == 0:
            return np.full((n,), float(self.k), dtype=float)
        return _as_vector("k", self.k, n=n)


@dataclass(frozen=True, eq=False)
class SpeciesRates:
    """
    Per-species rate vectors, sorted tallest (most shade-casting) first.

    species_id keeps the index each species had in the caller's input so that
    results can be mapped back after sorting.
    """

    species_id: np.ndarray
    height: np.ndarray
    biomass: np.ndarray
    fecundity: np.ndarray
    mortality: np.ndarray
    light_capture: np.ndarray
    u: np.ndarray
    light_above_total: float = const.LIGHT_TOTAL
    params: ModelParams | None = field(default=None, compare=False)

    @property
    def n_species(self) -> int:
        return int(self.u.shape[0])

    @classmethod
    def from_rates(
        cls,
        fecundity,
        mortality,
        light_capture,
        *,
        light_above_total: float = const.LIGHT_TOTAL,
    ) -> SpeciesRates:
        """
        Community given directly by demographic rates, already in canopy order
        (first entry on top). No allometry: height and biomass are NaN.
        """
        f = _as_vector("fecundity", fecundity)
        n = f.shape[0]
        mort = _as_vector("mortality", mortality, n=n)
        k = _as_vector("light_capture", light_capture)
        if k.shape[0] == 1:
            k = np.full((n,), k[0], dtype=float)
        elif k.shape[0] != n:
            raise InvalidParameter(f"light_capture has {k.shape[0]} entries, expected {n}")
        for name, arr in (("fecundity", f), ("mortality", mort), ("light_capture", k)):
            if np.any(arr <= 0.0):
                raise InvalidParameter(f"{name} must be > 0")
        nan = np.full((n,), np.nan, dtype=float)
        return cls(
            species_id=np.arange(n),
            height=nan,
            biomass=nan.copy(),
            fecundity=f,
            mortality=mort,
            light_capture=k,
            u=mort / (f * k),
            light_above_total=_positive("light_above_total", light_above_total),
        )


def minimum_light_requirement(params: ModelParams, n: int = 1) -> np.ndarray:
    """u_min = r / (a*k): light requirement of a zero-height species."""
    return params.r / (params.a * params.capture_vector(n))


def _rates_from_heights(params: ModelParams, heights: np.ndarray, k: np.ndarray) -> SpeciesRates:
    # Stable sort: ties keep input order
    order = np.argsort(-heights, kind="stable")
    h = heights[order]
    kk = k[order]
    biomass = params.b * h**params.beta
    if not np.all(np.isfinite(biomass)) or np.any(biomass <= 0.0):
        raise InvalidParameter("heights produce non-positive or non-finite biomass")
    fecundity = params.a / biomass
    mortality = params.r / biomass + params.m
    u = mortality / (fecundity * kk)
    return SpeciesRates(
        species_id=order.astype(int),
        height=h,
        biomass=biomass,
        fecundity=fecundity,
        mortality=mortality,
        light_capture=kk,
        u=u,
        light_above_total=const.LIGHT_TOTAL,
        params=params,
    )


def derive_from_heights(params: ModelParams, heights: Sequence[float]) -> SpeciesRates:
    """
    Per-species rates from canopy heights:
      biomass = b*h^beta, f = a/biomass, m_i = r/biomass + m, u = m_i/(f*k)
    """
    h = _as_vector("heights", heights)
    if np.any(h <= 0.0):
        raise InvalidParameter("heights must be > 0")
    return _rates_from_heights(params, h, params.capture_vector(h.shape[0]))


def heights_from_light_requirements(params: ModelParams, u: Sequence[float]) -> np.ndarray:
    """
    Invert the allometric relation: biomass = (u*a*k - r)/m, h = (biomass/b)^(1/beta).
    Raises InfeasibleTrait when u <= u_min (no finite positive height exists).
    """
    uu = _as_vector("u", u)
    if np.any(uu <= 0.0) or np.any(uu > 1.0):
        raise InvalidParameter("light requirements must lie in (0, 1]")
    k = params.capture_vector(uu.shape[0])
    u_min = params.r / (params.a * k)
    bad = np.flatnonzero(uu <= u_min)
    if bad.size:
        i = int(bad[0])
        raise InfeasibleTrait(
            f"u[{i}]={uu[i]:.6g} <= u_min={u_min[i]:.6g}; no finite positive height"
        )
    biomass = (uu * params.a * k - params.r) / params.m
    with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
        heights = (biomass / params.b) ** (1.0 / params.beta)
    bad = np.flatnonzero(~np.isfinite(heights) | (heights <= 0.0))
    if bad.size:
        i = int(bad[0])
        raise InfeasibleTrait(f"u[{i}]={uu[i]:.6g} implies non-positive or non-finite height")
    return heights


def derive_from_light_requirements(params: ModelParams, u: Sequence[float]) -> SpeciesRates:
    """
    Per-species rates from target light requirements. Heights are back-calculated
    so that the derived u reproduces the request; species end up in decreasing-u
    (= decreasing-height) order.
    """
    heights = heights_from_light_requirements(params, u)
    rates = _rates_from_heights(params, heights, params.capture_vector(heights.shape[0]))
    # Report the requested u exactly rather than its round-tripped value
    requested = _as_vector("u", u)[rates.species_id]
    return replace(rates, u=requested)


__all__ = [
    "ModelParams",
    "SpeciesRates",
    "minimum_light_requirement",
    "derive_from_heights",
    "heights_from_light_requirements",
    "derive_from_light_requirements",
]
