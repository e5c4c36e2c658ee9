from __future__ import annotations

# Re-export public API for pyramet

from .dynamics import Trajectory, compare_to_equilibrium, ramet_derivatives, simulate_ramets
from .equilibrium import (
    CanopyEquilibrium,
    CanopyLayer,
    calculate_equilibrium,
    equilibrium_bracket,
    equilibrium_from_rates,
    light_balance_residual,
    solve_species,
)
from .errors import (
    InfeasibleTrait,
    IntegrationDivergence,
    InvalidParameter,
    RametModelError,
    RootBracketFailure,
)
from .scenarios import ScenarioConfig, ScenarioResult, bin_records, run_scenarios
from .traits import (
    ModelParams,
    SpeciesRates,
    derive_from_heights,
    derive_from_light_requirements,
    minimum_light_requirement,
)

__all__ = [
    "ModelParams",
    "SpeciesRates",
    "derive_from_heights",
    "derive_from_light_requirements",
    "minimum_light_requirement",
    "CanopyLayer",
    "CanopyEquilibrium",
    "light_balance_residual",
    "equilibrium_bracket",
    "solve_species",
    "calculate_equilibrium",
    "equilibrium_from_rates",
    "Trajectory",
    "ramet_derivatives",
    "simulate_ramets",
    "compare_to_equilibrium",
    "ScenarioConfig",
    "ScenarioResult",
    "bin_records",
    "run_scenarios",
    "RametModelError",
    "InvalidParameter",
    "InfeasibleTrait",
    "RootBracketFailure",
    "IntegrationDivergence",
]
