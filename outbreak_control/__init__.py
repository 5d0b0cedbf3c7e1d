"""outbreak_control: reactive epidemic control-loop engine.

Advances an Outbreak and its Persons one period at a time through a
two-phase state-machine protocol:
  - Policy models (NoControl, ReactiveLockdown) decide population-wide
    interventions from Binomial trigger indicators using Wilson intervals,
    with separate start/release thresholds for hysteresis
  - Behaviour models (NonCompliant, LockdownIsolation) govern individual
    isolation and compliance, and can be forced by policy broadcasts
  - Normalised convolution kernels turn dated evidence (symptom onset,
    test sample, contact) into a latent risk signal
"""

__version__ = "0.1.0"
