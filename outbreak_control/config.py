"""Configuration system for outbreak_control.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → sweep overrides

Sections map 1:1 to YAML top-level keys. Unknown keys inside a section
are ignored, so scenario files may carry annotations for other tools.
Everything the control loop cannot recover from at run time (hysteresis
thresholds, trigger names, variant names, degenerate kernels) is rejected
here, before the first period runs.
"""

from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from outbreak_control import behaviour, policy  # noqa: F401  (register model families)
from outbreak_control.kernel import Kernel, KernelSpec, resolve_kernel
from outbreak_control.statemachine import (
    BEHAVIOUR, POLICY, undefined_transitions, variant_from_name,
)
from outbreak_control.triggers import Trigger


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Run length, population and reproducibility."""
    seed: int = 42
    n_periods: int = 100
    population_size: int = 100
    parallel_workers: int = 1       # threads for per-person phases


@dataclass
class PolicySection:
    """Outbreak-level policy model and its reactive thresholds.

    lockdown_release_trigger must lie strictly below lockdown_start_trigger;
    the gap is the hysteresis band that stops MONITOR↔LOCKDOWN flapping.
    """
    model: str = "ReactiveLockdown.MONITOR"
    lockdown_start_trigger: float = 0.05
    lockdown_release_trigger: float = 0.01
    lockdown_trigger_value: str = "TEST_POSITIVITY"
    lockdown_behaviour: str = "LockdownIsolation.ISOLATE"
    release_behaviour: str = "LockdownIsolation.RELEASE"
    confidence: float = 0.95
    screening_probability: float = 0.01
    screening_sensitivity: float = 1.0
    screening_specificity: float = 1.0


@dataclass
class BehaviourSection:
    """Person-level behaviour model and compliance dynamics."""
    model: str = "NonCompliant.ALIVE"
    compliance_baseline: float = 0.7            # P(compliant) before modifiers
    self_isolation_depth: float = 0.1           # mobility while isolating
    compliance_deterioration_rate: float = 0.02  # per period while isolating
    compliance_improvement_rate: float = 0.01    # per period after release


@dataclass
class RiskSection:
    """Convolution kernels for dated evidence (name or mapping)."""
    symptom_kernel: KernelSpec = "symptom_onset"
    test_kernel: KernelSpec = "test_sample"
    contact_kernel: KernelSpec = "contact"
    test_window: int = 7            # periods a test result stays relevant

    def kernels(self) -> Dict[str, Kernel]:
        """Resolve the three kernels, keyed 'symptom', 'test', 'contact'."""
        return {
            'symptom': resolve_kernel(self.symptom_kernel),
            'test': resolve_kernel(self.test_kernel),
            'contact': resolve_kernel(self.contact_kernel),
        }


@dataclass
class OutbreakConfig:
    """Complete configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    policy: PolicySection = field(default_factory=PolicySection)
    behaviour: BehaviourSection = field(default_factory=BehaviourSection)
    risk: RiskSection = field(default_factory=RiskSection)


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


_SECTION_MAP = {
    'simulation': SimulationSection,
    'policy': PolicySection,
    'behaviour': BehaviourSection,
    'risk': RiskSection,
}


def _yaml_to_config(data: Dict) -> OutbreakConfig:
    """Convert a merged YAML dict to an OutbreakConfig."""
    sections = {}
    for key, cls in _SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    return OutbreakConfig(**sections)


def config_to_dict(config: OutbreakConfig) -> Dict[str, Any]:
    """Plain nested dict of a config, suitable for yaml.safe_dump."""
    return dataclasses.asdict(config)


def config_from_dict(data: Dict, validate: bool = True) -> OutbreakConfig:
    """Build (and by default validate) a config from a nested dict."""
    merged = deep_merge(config_to_dict(OutbreakConfig()), data)
    config = _yaml_to_config(merged)
    if validate:
        validate_config(config)
    return config


# ═══════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════

def _check_unit(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be in [0, 1], got {value}")


def validate_config(config: OutbreakConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    Checks:
      - Simulation sizes and seed are in range
      - Policy thresholds are proportions with release < start
      - Trigger and variant names resolve, and variants are of the right kind
      - Kernels normalise (DegenerateKernelError otherwise)
    """
    sim = config.simulation
    if sim.seed < 0:
        raise ValueError("simulation.seed must be non-negative")
    for name in ('n_periods', 'population_size', 'parallel_workers'):
        value = getattr(sim, name)
        if value < 1:
            raise ValueError(f"simulation.{name} must be >= 1, got {value}")

    pol = config.policy
    _check_unit('policy.lockdown_start_trigger', pol.lockdown_start_trigger)
    _check_unit('policy.lockdown_release_trigger', pol.lockdown_release_trigger)
    if pol.lockdown_release_trigger >= pol.lockdown_start_trigger:
        raise ValueError(
            f"policy.lockdown_release_trigger ({pol.lockdown_release_trigger}) "
            f"must be strictly below policy.lockdown_start_trigger "
            f"({pol.lockdown_start_trigger})"
        )
    if not 0.0 < pol.confidence < 1.0:
        raise ValueError(f"policy.confidence must be in (0, 1), got {pol.confidence}")
    _check_unit('policy.screening_probability', pol.screening_probability)
    _check_unit('policy.screening_sensitivity', pol.screening_sensitivity)
    _check_unit('policy.screening_specificity', pol.screening_specificity)

    trigger = Trigger.from_name(pol.lockdown_trigger_value)
    if trigger is Trigger.SCREENING_TEST_POSITIVITY and pol.screening_probability == 0.0:
        warnings.warn(
            "policy.lockdown_trigger_value is SCREENING_TEST_POSITIVITY but "
            "policy.screening_probability is 0; the trigger will never fire.",
            UserWarning,
            stacklevel=2,
        )

    policy_variant = variant_from_name(pol.model, kind=POLICY)
    behaviour_families = {
        variant_from_name(name, kind=BEHAVIOUR).family
        for name in (config.behaviour.model, pol.lockdown_behaviour,
                     pol.release_behaviour)
    }
    missing = undefined_transitions(policy_variant.family, *behaviour_families)
    if missing:
        raise ValueError(f"Variants without a transition: {missing}")

    beh = config.behaviour
    _check_unit('behaviour.compliance_baseline', beh.compliance_baseline)
    _check_unit('behaviour.self_isolation_depth', beh.self_isolation_depth)
    for name in ('compliance_deterioration_rate', 'compliance_improvement_rate'):
        value = getattr(beh, name)
        if value < 0:
            raise ValueError(f"behaviour.{name} must be non-negative, got {value}")

    if config.risk.test_window < 1:
        raise ValueError(
            f"risk.test_window must be >= 1, got {config.risk.test_window}"
        )
    config.risk.kernels()


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    sweep_overrides: Optional[Dict] = None,
) -> OutbreakConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → sweep overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        sweep_overrides: Optional dict of parameter sweep overrides.

    Returns:
        Validated OutbreakConfig.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if scenario_path.exists():
            with open(scenario_path) as f:
                scenario = yaml.safe_load(f) or {}
            deep_merge(config_dict, scenario)

    if sweep_overrides is not None:
        deep_merge(config_dict, sweep_overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def save_config(config: OutbreakConfig, path: Union[str, Path]) -> None:
    """Write a config as YAML (round-trips through load_config)."""
    with open(path, 'w') as f:
        yaml.safe_dump(config_to_dict(config), f, sort_keys=False)


def default_config() -> OutbreakConfig:
    """Return an OutbreakConfig with all default values."""
    config = OutbreakConfig()
    validate_config(config)
    return config
