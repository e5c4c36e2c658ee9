"""
Canopy equilibrium:
- single species matches an independent dense grid search
- monotonicity in u and in light-capture efficiency
- Beer's-law light bookkeeping and light ordering through the canopy
- zero light margin, the two-species worked example, per-species bracket failures
"""

import math

import numpy as np
import pytest

from pyramet.equilibrium import (
    calculate_equilibrium,
    equilibrium_bracket,
    equilibrium_from_rates,
    light_balance_residual,
    solve_species,
)
from pyramet.errors import InvalidParameter, RootBracketFailure
from pyramet.traits import ModelParams, SpeciesRates, derive_from_heights


def _bisect(light_above, u, k, n_iter=200):
    """Independent positive root of L*(1-exp(-k*x)) = k*u*x (requires L > u)."""
    lo, hi = 1e-12, light_above / (k * u)
    for _ in range(n_iter):
        mid = 0.5 * (lo + hi)
        if light_above * (1.0 - math.exp(-k * mid)) - k * u * mid > 0.0:
            lo = mid
        else:
            hi = mid
    return 0.5 * (lo + hi)


@pytest.mark.parametrize("u,k,light", [(0.2, 2.0, 1.0), (0.11, 1.0, 1.0), (0.6, 0.5, 1.0), (0.05, 3.0, 0.4)])
def test_single_species_matches_grid_search(u, k, light):
    res = calculate_equilibrium([u], [k], light)
    y = res.densities[0]

    lo, hi = equilibrium_bracket(light, u, k)
    x = np.linspace(lo, hi, 2_000_001)
    g = light * (1.0 - np.exp(-k * x)) - k * u * x
    j = int(np.flatnonzero(np.sign(g[:-1]) != np.sign(g[1:]))[0])
    dx = x[1] - x[0]
    assert abs(y - x[j]) <= 2.0 * dx

    layer = res.layers[0]
    assert layer.light_above == light
    assert layer.feasible
    assert len(res) == 1


def test_density_decreases_with_light_requirement():
    us = np.linspace(0.05, 0.95, 19)
    ys = [calculate_equilibrium([u], [1.0]).densities[0] for u in us]
    assert np.all(np.diff(ys) < 0.0)


def test_density_increases_with_light_capture_at_fixed_rates():
    # Fixed fecundity/mortality: better light capture lowers u = m/(f*k)
    f, m = 2.0, 0.5
    ks = [0.5, 1.0, 2.0, 4.0]
    ys = []
    for k in ks:
        rates = SpeciesRates.from_rates([f], [m], [k])
        ys.append(equilibrium_from_rates(rates).densities[0])
    assert np.all(np.diff(ys) > 0.0)


def test_fixed_u_keeps_optical_depth():
    # At fixed u, the absorbed optical depth k*y does not depend on k
    depths = [k * calculate_equilibrium([0.3], [k]).densities[0] for k in (0.5, 1.0, 3.0)]
    np.testing.assert_allclose(depths, depths[0], rtol=1e-8)


def _random_community(seed, n):
    rng = np.random.default_rng(seed)
    heights = rng.uniform(0.5, 1.5, size=n)
    return derive_from_heights(ModelParams(k=0.3), heights)


@pytest.mark.parametrize("seed", [0, 1, 2])
def test_light_bookkeeping(seed):
    rates = _random_community(seed, 12)
    res = equilibrium_from_rates(rates)
    for layer in res.layers:
        expected = layer.light_above * math.exp(-layer.light_capture * layer.equilibrium_density)
        assert math.isclose(layer.light_below, expected, rel_tol=1e-12, abs_tol=1e-15)
        assert math.isclose(layer.light_absorbed, layer.light_above - layer.light_below)
        assert math.isclose(layer.light_acquired, layer.light_above - layer.u)
        if layer.equilibrium_density > 0.0:
            # absorbed light equals demanded light at the root
            demand = layer.light_capture * layer.u * layer.equilibrium_density
            assert math.isclose(layer.light_absorbed, demand, rel_tol=1e-8, abs_tol=1e-12)
            assert math.isclose(layer.light_per_ramet, layer.light_above / layer.equilibrium_density)
        else:
            assert layer.light_per_ramet is None


@pytest.mark.parametrize("seed", [3, 4])
def test_light_ordering(seed):
    rates = _random_community(seed, 20)
    res = equilibrium_from_rates(rates)
    prof = res.light_profile
    assert prof[0] == rates.light_above_total
    assert np.all(np.diff(prof) <= 0.0)
    assert prof.shape == (21,)
    # next layer sees exactly what the previous one passes down
    for upper, lower in zip(res.layers[:-1], res.layers[1:]):
        assert lower.light_above == upper.light_below
    np.testing.assert_array_equal(res.species_id, rates.species_id)


def test_zero_light_margin_is_infeasible():
    res = calculate_equilibrium([0.5], [1.0], light_above_total=0.5)
    layer = res.layers[0]
    assert layer.equilibrium_density == 0.0
    assert not layer.feasible
    assert layer.light_below == 0.5
    assert layer.light_per_ramet is None
    assert res.richness == 0
    assert res.failures == ()


def test_two_species_worked_example():
    res = calculate_equilibrium([0.1, 0.3], [2.0, 2.0], 1.0)
    x1 = _bisect(1.0, 0.1, 2.0)
    assert x1 > 1.0
    assert math.isclose(res.densities[0], x1, rel_tol=1e-8)

    l2 = math.exp(-2.0 * x1)
    assert math.isclose(res.layers[1].light_above, l2, rel_tol=1e-8)
    # species 2 needs more light than it receives
    assert 0.3 >= l2
    assert res.densities[1] == 0.0
    assert not res.layers[1].feasible
    np.testing.assert_array_equal(res.feasible, [True, False])


def test_shorter_species_coexists_under_sparse_canopy():
    res = calculate_equilibrium([0.5, 0.2], [1.0, 1.0])
    x1 = _bisect(1.0, 0.5, 1.0)
    l2 = math.exp(-x1)
    x2 = _bisect(l2, 0.2, 1.0)
    np.testing.assert_allclose(res.densities, [x1, x2], rtol=1e-6)
    assert res.richness == 2


def test_feasibility_threshold():
    # density just under 5e-4 rounds to 0 at three decimals
    u = 1.0 - 1e-4
    res = calculate_equilibrium([u], [1.0])
    y = res.densities[0]
    assert 0.0 < y < 5e-4
    assert not res.layers[0].feasible


def test_bracket_signs():
    rng = np.random.default_rng(7)
    for _ in range(200):
        light = rng.uniform(0.01, 1.0)
        u = light * rng.uniform(0.05, 0.99)
        k = rng.uniform(0.1, 5.0)
        lo, hi = equilibrium_bracket(light, u, k)
        assert lo < hi
        assert light_balance_residual(lo, light, u, k) > 0.0
        assert light_balance_residual(hi, light, u, k) < 0.0


def test_solve_species_failures():
    with pytest.raises(RootBracketFailure) as ei:
        solve_species(1.0, 0.2, 0.0, species_id=4)
    assert ei.value.species_id == 4
    assert ei.value.k == 0.0

    with pytest.raises(RootBracketFailure):
        solve_species(1.0, 0.2, 1.0, maxiter=1)

    # not enough light: no solve needed
    assert solve_species(0.2, 0.3, 1.0) == 0.0


def test_bracket_failure_degrades_one_species(capsys):
    res = calculate_equilibrium([0.2, 0.3, 0.001], [1.0, 0.0, 1.0], diag=True)
    assert len(res.failures) == 1
    assert res.failures[0].species_id == 1

    failed = res.layers[1]
    assert failed.bracket_failure
    assert failed.equilibrium_density == 0.0
    assert not failed.feasible
    assert failed.light_below == failed.light_above
    # the species below still gets processed with the light passed through
    assert res.layers[2].light_above == res.layers[0].light_below
    assert res.layers[2].equilibrium_density > 0.0

    out = capsys.readouterr().out
    assert "[Canopy]" in out


def test_invalid_inputs():
    with pytest.raises(InvalidParameter):
        calculate_equilibrium([0.2, 0.0], [1.0, 1.0])
    with pytest.raises(InvalidParameter):
        calculate_equilibrium([0.2, 0.3], [1.0, 1.0, 1.0])
    with pytest.raises(InvalidParameter):
        calculate_equilibrium([0.2], [1.0], light_above_total=0.0)
    with pytest.raises(InvalidParameter):
        calculate_equilibrium([], [])
    with pytest.raises(InvalidParameter):
        calculate_equilibrium([0.2, 0.3], [1.0, 1.0], species_id=[0])


def test_table_contract():
    res = calculate_equilibrium([0.1, 0.3], [2.0, 2.0])
    df = res.to_frame()
    for col in (
        "species_id",
        "light_above",
        "u",
        "equilibrium_density",
        "light_below",
        "feasible",
        "light_acquired",
        "light_per_ramet",
    ):
        assert col in df.columns
    assert len(df) == 2
    assert np.isfinite(df.loc[0, "light_per_ramet"])
    assert np.isnan(df.loc[1, "light_per_ramet"])
    assert not bool(df.loc[1, "feasible"])


def test_large_light_margin():
    # L/u = 1000: the root sits on the upper bound to machine precision
    y = solve_species(1.0, 1e-3, 1.0)
    assert math.isclose(y, 1000.0, rel_tol=1e-9)
    y = solve_species(1.0, 0.02, 2.0)
    assert math.isclose(y, _bisect(1.0, 0.02, 2.0), rel_tol=1e-9)
