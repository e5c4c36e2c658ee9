# pyramet/constants.py

"""
Central repository for the default physiological constants and numerical
settings of the ramet light-competition model. All quantities are
dimensionless relative rates.
"""

# --- Physiological defaults (species-generic) ---
A_PHOTO = 10.0  # photosynthetic rate a
R_RESP = 1.0  # respiration rate r
B_BIOMASS = 1.0  # biomass density coefficient b
BETA_ALLOM = 5.0  # allometric exponent (biomass ∝ height^beta)
M_BASE = 0.1  # baseline mortality m
K_CAPTURE = 1.0  # light-capture coefficient k

# Incident light at the canopy top (normalized)
LIGHT_TOTAL = 1.0

# --- Equilibrium root-finding (Brent) ---
ROOT_XTOL = 1.0e-12
ROOT_RTOL = 1.0e-10
ROOT_MAXITER = 100

# Density below which a species counts as absent (rounds to 0 at 3 decimals)
FEASIBLE_DENSITY_MIN = 5.0e-4

# --- ODE integration ---
ODE_METHOD = "BDF"
ODE_RTOL = 1.0e-8
ODE_ATOL = 1.0e-10
# Densities below -max(10*atol, NEGATIVE_DENSITY_TOL) count as divergence
NEGATIVE_DENSITY_TOL = 1.0e-8

# --- Monte Carlo scenarios ---
SCEN_N_ITER = 1000
SCEN_N_SPECIES = 10
SCEN_N_BINS = 10
SCEN_HEIGHT_RANGE = (0.5, 1.5)
SCEN_U_RANGE = (0.15, 0.9)
