"""
Shared constants used across multiple modules.
Single source of truth for the numeric thresholds of the learning engine.
"""

import math

# Two-sided 95% normal quantile used for every interval in the engine
Z_95 = 1.96

# Modified z-score scale (Iglewicz & Hoaglin 1993)
MODIFIED_Z_SCALE = 0.6745

# MAD -> sigma for normally distributed data
MAD_TO_SIGMA = 1.4826

# Additive guard in error ratios (adaptive weights, weight updates)
ERROR_EPSILON = 0.01

# Pivots smaller than this are treated as zero during elimination
PIVOT_TOLERANCE = 1e-10

LN2 = math.log(2)
SECONDS_PER_DAY = 86400.0

# Significance level for the Mann-Kendall direction gate
TREND_ALPHA = 0.05

# Defaults for missing physiological fields on an observation
DEFAULT_AVG_HR = 150.0
DEFAULT_PERCEIVED_EFFORT = 5.0
DEFAULT_SLEEP_QUALITY = 7.0
DEFAULT_READINESS = 75.0
DEFAULT_FATIGUE = 5.0

TARGET_VARIABLES = ("distance", "fatigue", "readiness")
