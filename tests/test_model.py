"""End-to-end tests for outbreak_control.model — the reactive lockdown scenario."""

import numpy as np
import pytest

from outbreak_control.config import config_from_dict
from outbreak_control.model import SimulationResult, run_simulation, summarise
from outbreak_control.observations import ScriptedObservations

MONITOR = "ReactiveLockdown.MONITOR"
LOCKDOWN = "ReactiveLockdown.LOCKDOWN"

# burden 0.0 for 5 periods, 0.10 for 5 periods, then 0.0
BURDEN = [0.0] * 5 + [0.10] * 5 + [0.0] * 10


def _scenario(trials, n=10, **policy):
    settings = {
        'model': MONITOR,
        'lockdown_trigger_value': 'HOSPITAL_BURDEN',
        'lockdown_start_trigger': 0.05,
        'lockdown_release_trigger': 0.01,
    }
    settings.update(policy)
    config = config_from_dict({
        'simulation': {'population_size': n, 'seed': 2024},
        'policy': settings,
    })
    script = ScriptedObservations.from_proportions(
        'hospitalisation_rate', BURDEN, trials=trials
    )
    return run_simulation(config, observations=script, n_periods=len(BURDEN) - 1)


class TestReactiveLockdownScenario:
    def test_well_sampled_burden(self):
        """With 1000 observations per period the policy follows the burden."""
        result = _scenario(trials=1000)
        assert isinstance(result, SimulationResult)
        assert result.n_periods == 19
        expected = [MONITOR] * 6 + [LOCKDOWN] * 5 + [MONITOR] * 9
        assert list(result.policy) == expected
        assert result.transitions == [(5, MONITOR, LOCKDOWN), (10, LOCKDOWN, MONITOR)]

    def test_monitor_before_outbreak(self):
        result = _scenario(trials=1000)
        assert all(result.policy[:5] == MONITOR)

    def test_lockdown_isolates_everyone(self):
        result = _scenario(trials=1000)
        assert result.isolating[5] == 0
        assert result.isolating[6] == 10
        assert result.outbreak.state_at(6).behaviour_count("LockdownIsolation.ISOLATE") == 10
        assert result.outbreak.state_at(7).behaviour_count("LockdownIsolation.ISOLATE") == 0

    def test_indicator_arrays(self):
        result = _scenario(trials=1000)
        np.testing.assert_array_equal(result.indicator_trials, np.full(20, 1000))
        np.testing.assert_array_equal(result.indicator_successes[4:7], [0, 100, 100])
        assert result.indicator_lower[5] > 0.05
        assert result.indicator_upper[10] < 0.01
        assert result.periods_in(LOCKDOWN).tolist() == [6, 7, 8, 9, 10]

    def test_ten_observations_never_confident(self):
        """1 in 10 is above 5% but never confidently so: no lockdown."""
        result = _scenario(trials=10)
        assert list(result.policy) == [MONITOR] * 20
        assert result.transitions == []
        assert all(result.indicator_lower < 0.05)

    def test_lockdown_waits_for_confidence(self):
        """With 100 observations the same burden locks down, never early."""
        result = _scenario(trials=100)
        for t, before, after in result.transitions:
            if after == LOCKDOWN:
                assert t >= 5
                assert result.indicator_lower[t] > 0.05

    def test_no_control_arm(self):
        result = _scenario(trials=1000, model="NoControl.DEFAULT")
        assert set(result.policy) == {"NoControl.DEFAULT"}
        assert result.isolating.sum() == 0


class TestRunSimulation:
    def test_defaults_run(self):
        config = config_from_dict({'simulation': {'population_size': 5, 'n_periods': 3}})
        result = run_simulation(config)
        assert result.n_periods == 3
        assert result.trigger == "TEST_POSITIVITY"
        np.testing.assert_array_equal(result.population, [5, 5, 5, 5])

    def test_invalid_config_rejected_before_running(self):
        config = config_from_dict({'simulation': {'population_size': 2}})
        config.policy.lockdown_release_trigger = 0.5
        with pytest.raises(ValueError):
            run_simulation(config, n_periods=1)

    def test_summarise_is_repeatable(self):
        result = _scenario(trials=1000)
        again = summarise(result.outbreak, result.transitions)
        np.testing.assert_array_equal(again.policy, result.policy)
        np.testing.assert_array_equal(again.indicator_lower, result.indicator_lower)
