# ember/defaults.py
from __future__ import annotations

import sys
from datetime import timedelta


# --------------------------------------------------
# Verification
# --------------------------------------------------

TOLERANCE = 1e-3
PROBE_SIZE = 1e-4
BATCH_SIZE = 10

# Denominator floor for relative error
RELATIVE_EPSILON = 1e-12


# --------------------------------------------------
# Iterative training
# --------------------------------------------------

MAX_ITERATIONS = sys.maxsize
TIMEOUT = timedelta(minutes=5)
TERMINATE_THRESHOLD = 0.0
ITERATIONS_PER_SAMPLE = 100
MAX_RETRIES = 10


# --------------------------------------------------
# Training characteristics (TrainingTester)
# --------------------------------------------------

TRAINING_BATCHES = 3
TRAINING_TIMEOUT = timedelta(seconds=30)
TRAINING_MAX_ITERATIONS = 250
CONVERGENCE_THRESHOLD = 1e-9
