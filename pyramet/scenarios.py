"""
Monte Carlo exploration of community-level patterns.

Each iteration draws S trait values (heights or light requirements) uniformly
from a configured range, derives per-species rates, solves the canopy
equilibrium and emits one row per species. Rows are binned afterwards by
height and by light requirement.

Iterations are independent: each gets its own child SeedSequence, so results
depend only on (seed, iteration index) and not on how iterations are spread
over joblib workers.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from tqdm import tqdm

from . import constants as const
from .config import diag_enabled, env_bool, env_int, env_range, env_str
from .equilibrium import equilibrium_from_rates
from .errors import InfeasibleTrait, InvalidParameter
from .traits import (
    ModelParams,
    derive_from_heights,
    derive_from_light_requirements,
    minimum_light_requirement,
)

TRAITS = ("height", "u")

RECORD_COLUMNS = [
    "iteration",
    "species_id",
    "rank",
    "height",
    "u",
    "equilibrium_density",
    "light_above",
    "light_below",
    "feasible",
    "bracket_failure",
]


@dataclass(frozen=True)
class ScenarioConfig:
    """Monte Carlo batch settings (env-driven via from_env)."""

    n_iter: int = const.SCEN_N_ITER
    n_species: int = const.SCEN_N_SPECIES
    trait: str = "height"
    trait_range: tuple[float, float] | None = None
    n_bins: int = const.SCEN_N_BINS
    seed: int | None = None
    n_jobs: int = 1
    progress: bool = False
    params: ModelParams = field(default_factory=ModelParams)

    def __post_init__(self) -> None:
        if self.trait not in TRAITS:
            raise InvalidParameter(f"trait must be one of {TRAITS}, got {self.trait!r}")
        if int(self.n_iter) < 1 or int(self.n_species) < 1 or int(self.n_bins) < 1:
            raise InvalidParameter("n_iter, n_species and n_bins must be >= 1")
        if self.trait_range is None:
            default = const.SCEN_U_RANGE if self.trait == "u" else const.SCEN_HEIGHT_RANGE
            object.__setattr__(self, "trait_range", default)
        lo, hi = (float(v) for v in self.trait_range)
        if not (np.isfinite(lo) and np.isfinite(hi)) or lo <= 0.0 or hi <= lo:
            raise InvalidParameter(f"trait_range must satisfy 0 < lo < hi, got {self.trait_range!r}")
        if self.trait == "u":
            if hi > 1.0:
                raise InvalidParameter("light-requirement range must lie within (0, 1]")
            if np.ndim(self.params.k) > 0:
                raise InvalidParameter("random communities need a scalar k")
            u_min = float(minimum_light_requirement(self.params)[0])
            if lo <= u_min:
                raise InfeasibleTrait(
                    f"light-requirement range starts at {lo:.6g} <= u_min={u_min:.6g}"
                )
        object.__setattr__(self, "trait_range", (lo, hi))

    @classmethod
    def from_env(cls) -> ScenarioConfig:
        trait = env_str("SCEN_TRAIT", "height").lower()
        default_range = const.SCEN_U_RANGE if trait == "u" else const.SCEN_HEIGHT_RANGE
        seed = env_int("SCEN_SEED", -1)
        return cls(
            n_iter=env_int("SCEN_ITER", const.SCEN_N_ITER),
            n_species=env_int("SCEN_SPECIES", const.SCEN_N_SPECIES),
            trait=trait,
            trait_range=env_range("SCEN_RANGE", default_range),
            n_bins=env_int("SCEN_BINS", const.SCEN_N_BINS),
            seed=None if seed < 0 else seed,
            n_jobs=env_int("SCEN_JOBS", 1),
            progress=env_bool("SCEN_PROGRESS", False),
            params=ModelParams.from_env(),
        )


def draw_traits(rng: np.random.Generator, config: ScenarioConfig) -> np.ndarray:
    lo, hi = config.trait_range
    return rng.uniform(lo, hi, size=int(config.n_species))


def run_iteration(iteration: int, seed_seq: np.random.SeedSequence, config: ScenarioConfig) -> list[dict]:
    """One Monte Carlo draw -> one row per species (canopy order)."""
    rng = np.random.default_rng(seed_seq)
    traits = draw_traits(rng, config)
    if config.trait == "height":
        rates = derive_from_heights(config.params, traits)
    else:
        rates = derive_from_light_requirements(config.params, traits)
    eq = equilibrium_from_rates(rates, diag=False)
    rows = []
    for rank, layer in enumerate(eq.layers):
        rows.append(
            {
                "iteration": int(iteration),
                "species_id": layer.species_id,
                "rank": rank,
                "height": float(rates.height[rank]),
                "u": layer.u,
                "equilibrium_density": layer.equilibrium_density,
                "light_above": layer.light_above,
                "light_below": layer.light_below,
                "feasible": layer.feasible,
                "bracket_failure": layer.bracket_failure,
            }
        )
    return rows


def bin_records(
    records: pd.DataFrame,
    by: str,
    n_bins: int,
    value_range: tuple[float, float] | None = None,
) -> pd.DataFrame:
    """
    Mean equilibrium density in equal-width bins of `by`.

    Empty bins are sampling gaps: count 0 and NaN means, never 0.
    The right edge of the last bin is inclusive.
    """
    if by not in records.columns:
        raise InvalidParameter(f"unknown column {by!r}")
    values = records[by].to_numpy(dtype=float)
    if value_range is None:
        if values.size == 0:
            raise InvalidParameter("cannot infer bin range from empty records")
        value_range = (float(np.min(values)), float(np.max(values)))
    lo, hi = float(value_range[0]), float(value_range[1])
    if hi <= lo:
        hi = lo + 1.0
    edges = np.linspace(lo, hi, int(n_bins) + 1)
    idx = np.clip(np.searchsorted(edges, values, side="right") - 1, 0, int(n_bins) - 1)
    inside = (values >= lo) & (values <= hi)

    density = records["equilibrium_density"].to_numpy(dtype=float)
    feasible = records["feasible"].to_numpy(dtype=float)
    count = np.bincount(idx[inside], minlength=int(n_bins))
    dens_sum = np.bincount(idx[inside], weights=density[inside], minlength=int(n_bins))
    feas_sum = np.bincount(idx[inside], weights=feasible[inside], minlength=int(n_bins))
    with np.errstate(divide="ignore", invalid="ignore"):
        mean_density = np.where(count > 0, dens_sum / count, np.nan)
        mean_feasible = np.where(count > 0, feas_sum / count, np.nan)
    return pd.DataFrame(
        {
            "bin_left": edges[:-1],
            "bin_right": edges[1:],
            "bin_center": 0.5 * (edges[:-1] + edges[1:]),
            "count": count.astype(int),
            "mean_density": mean_density,
            "mean_feasible": mean_feasible,
        }
    )


@dataclass(frozen=True, eq=False)
class ScenarioResult:
    config: ScenarioConfig
    records: pd.DataFrame
    by_height: pd.DataFrame
    by_u: pd.DataFrame

    @property
    def n_bracket_failures(self) -> int:
        return int(self.records["bracket_failure"].sum())


def run_scenarios(config: ScenarioConfig | None = None, *, diag: bool | None = None) -> ScenarioResult:
    cfg = config if config is not None else ScenarioConfig.from_env()
    children = np.random.SeedSequence(cfg.seed).spawn(int(cfg.n_iter))
    jobs = range(int(cfg.n_iter))
    if cfg.progress:
        jobs = tqdm(jobs, desc="Scenarios")

    chunks = Parallel(n_jobs=int(cfg.n_jobs))(
        delayed(run_iteration)(i, children[i], cfg) for i in jobs
    )
    rows = [row for chunk in chunks for row in chunk]
    records = pd.DataFrame(rows, columns=RECORD_COLUMNS)

    if cfg.trait == "height":
        h_range, u_range = cfg.trait_range, None
    else:
        h_range, u_range = None, cfg.trait_range
    result = ScenarioResult(
        config=cfg,
        records=records,
        by_height=bin_records(records, "height", cfg.n_bins, h_range),
        by_u=bin_records(records, "u", cfg.n_bins, u_range),
    )
    if diag_enabled(diag):
        print(
            f"[Scenario] iter={cfg.n_iter} S={cfg.n_species} trait={cfg.trait} "
            f"mean_richness={records.groupby('iteration')['feasible'].sum().mean():.2f} "
            f"bracket_failures={result.n_bracket_failures}"
        )
    return result


__all__ = [
    "ScenarioConfig",
    "ScenarioResult",
    "draw_traits",
    "run_iteration",
    "bin_records",
    "run_scenarios",
]
