"""Tests for outbreak_control.observations — scripted, derived and kernel inputs."""

from types import SimpleNamespace

import pytest

from outbreak_control.binomial import EMPTY, Binomial
from outbreak_control.config import config_from_dict
from outbreak_control.kernel import Kernel
from outbreak_control.model import build_outbreak, initialise_outbreak
from outbreak_control.observations import (
    KernelRiskEstimator,
    OutbreakObservation,
    PopulationObservations,
    ScriptedObservations,
)
from outbreak_control.types import Builder, OutbreakState, PersonHistory, PersonState
from outbreak_control.updater import Updater


class TestOutbreakObservation:
    def test_from_mapping_accepts_pairs_and_mappings(self):
        obs = OutbreakObservation.from_mapping({
            'hospitalisation_rate': (3, 10),
            'presumed_test_positivity': {'successes': 1, 'trials': 4},
            'screening_test_positivity': Binomial(0, 2),
            'cumulative_infections': 7,
        })
        assert obs.hospitalisation_rate == Binomial(3, 10)
        assert obs.presumed_test_positivity == Binomial(1, 4)
        assert obs.screening_test_positivity == Binomial(0, 2)
        assert obs.presumed_test_positive_prevalence is None
        assert obs.as_updates() == {
            'cumulative_infections': 7,
            'hospitalisation_rate': Binomial(3, 10),
            'presumed_test_positivity': Binomial(1, 4),
            'screening_test_positivity': Binomial(0, 2),
        }

    def test_unknown_field(self):
        with pytest.raises(ValueError, match="Unknown observation"):
            OutbreakObservation.from_mapping({'r_number': (1, 2)})

    def test_invalid_counts(self):
        with pytest.raises(ValueError):
            OutbreakObservation.from_mapping({'hospitalisation_rate': (5, 2)})


class TestScriptedObservations:
    def test_from_proportions(self):
        script = ScriptedObservations.from_proportions(
            'hospitalisation_rate', [0.0, 0.1, 0.25], trials=40)
        assert len(script) == 3
        assert script.at(1).hospitalisation_rate == Binomial(4, 40)
        assert script.at(2).hospitalisation_rate == Binomial(10, 40)

    def test_out_of_range_times(self):
        script = ScriptedObservations([{'cumulative_infections': 1},
                                       {'cumulative_infections': 2}], start=3)
        assert script.at(0) is None
        assert script.at(3).cumulative_infections == 1
        assert script.at(50).cumulative_infections == 2

    def test_writes_builder(self):
        script = ScriptedObservations([{'hospitalisation_rate': (1, 2)}])
        builder = Builder(OutbreakState, time=0, cumulative_infections=4)
        script(builder, None, None)
        state = builder.build()
        assert state.hospitalisation_rate == Binomial(1, 2)
        # fields the script does not mention are left alone
        assert state.cumulative_infections == 4

    def test_empty_script(self):
        with pytest.raises(ValueError):
            ScriptedObservations([])


class TestPopulationObservations:
    def _run(self):
        config = config_from_dict({
            'simulation': {'population_size': 5},
            'policy': {'screening_probability': 1.0,
                       'lockdown_trigger_value': 'HOSPITAL_BURDEN'},
        })

        def hospitalise_first(builder, person, rng):
            if person.person_id == 0:
                builder.requires_hospitalisation = True

        outbreak = build_outbreak(config)
        updater = Updater(outbreak_processors=[PopulationObservations(test_window=3)],
                          person_processors=[hospitalise_first])
        initialise_outbreak(outbreak, updater, infected=[0, 1])
        updater.update(outbreak)
        return outbreak

    def test_initial_snapshot(self):
        initial = self._run().state_at(0)
        assert initial.hospitalisation_rate == Binomial(0, 5)
        assert initial.presumed_test_positivity == EMPTY
        assert initial.screening_test_positivity == EMPTY
        assert initial.cumulative_infections == 2

    def test_after_screening(self):
        state = self._run().state_at(1)
        assert state.hospitalisation_rate == Binomial(1, 5)
        assert state.screening_test_positivity == Binomial(2, 5)
        assert state.presumed_test_positivity == Binomial(2, 5)
        assert state.presumed_test_positive_prevalence == Binomial(2, 5)
        assert state.cumulative_infections == 2

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            PopulationObservations(test_window=0)


class TestKernelRiskEstimator:
    def _person(self):
        history = [
            PersonHistory(person_id=0, time=t,
                          symptomatic=t in (6, 7, 8),
                          screened=t == 9,
                          test_positive=True if t == 9 else None)
            for t in range(1, 10)
        ]
        return SimpleNamespace(history=history)

    def test_evidence_days(self):
        # records stamped t describe the period when snapshot t-1 was current
        estimator = KernelRiskEstimator()
        onsets, positives = estimator.evidence_days(self._person())
        assert onsets == [5]
        assert positives == [8]

    def test_exposure(self):
        estimator = KernelRiskEstimator(
            kernels={
                'symptom': Kernel.square(0, 6, target_sum=6.0),
                'test': Kernel.square(0, 3, target_sum=3.0),
                'contact': Kernel.square(0, 2, target_sum=2.0),
            },
            contact_days=lambda person, now: [now, now - 7],
        )
        builder = Builder(PersonState, person_id=0, time=10)
        estimator(builder, self._person(), None)
        # onset lag 5, positive test lag 2, contacts at lags 0 and 7
        assert builder.exposure == pytest.approx(3.0)

    def test_no_evidence(self):
        builder = Builder(PersonState, person_id=0, time=3)
        KernelRiskEstimator()(builder, SimpleNamespace(history=[]), None)
        assert builder.exposure == 0.0

    def test_onset_dated_to_symptomatic_snapshot(self):
        config = config_from_dict({
            'simulation': {'population_size': 1},
            'policy': {'screening_probability': 0.0,
                       'lockdown_trigger_value': 'HOSPITAL_BURDEN'},
        })

        def symptoms_at_two(builder, person, rng):
            if builder.time == 2:
                builder.symptomatic = True

        # weight 1 at lag 0, weight 2 at lag 1
        estimator = KernelRiskEstimator(
            kernels={'symptom': Kernel(0, [1.0, 2.0], target_sum=3.0)})
        outbreak = build_outbreak(config)
        updater = Updater(person_processors=[symptoms_at_two, estimator])
        initialise_outbreak(outbreak, updater)
        for _ in range(4):
            updater.update(outbreak)

        person = outbreak.people[0]
        assert estimator.evidence_days(person) == ([2], [])
        exposure = {t: person.state_at(t).exposure for t in range(1, 5)}
        # the onset at snapshot 2 is first seen one period later, at lag 1
        assert exposure == pytest.approx({1: 0.0, 2: 0.0, 3: 2.0, 4: 0.0})
