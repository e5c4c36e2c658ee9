"""
Error kinds of the ramet light-competition model.

- InvalidParameter / InfeasibleTrait: input validation, abort the whole call
- RootBracketFailure: one species' equilibrium solve failed; the community
  solve degrades that species to absent and continues
- IntegrationDivergence: one ODE run failed; batches carry on
"""

from __future__ import annotations


class RametModelError(Exception):
    """Base class for all model errors."""


class InvalidParameter(RametModelError, ValueError):
    """Non-positive / non-finite rate, height or light value."""


class InfeasibleTrait(RametModelError, ValueError):
    """Requested light requirement cannot correspond to a finite positive height."""


class RootBracketFailure(RametModelError, RuntimeError):
    def __init__(
        self,
        reason: str,
        *,
        species_id: int | None = None,
        light_above: float = float("nan"),
        u: float = float("nan"),
        k: float = float("nan"),
    ) -> None:
        self.reason = reason
        self.species_id = species_id
        self.light_above = float(light_above)
        self.u = float(u)
        self.k = float(k)
        super().__init__(
            f"species {species_id}: {reason} (light_above={self.light_above:.6g}, "
            f"u={self.u:.6g}, k={self.k:.6g})"
        )


class IntegrationDivergence(RametModelError, RuntimeError):
    def __init__(self, reason: str, *, t_reached: float = float("nan")) -> None:
        self.reason = reason
        self.t_reached = float(t_reached)
        super().__init__(f"{reason} (t_reached={self.t_reached:.6g})")
