"""Tests for outbreak_control.entities — snapshot sequences and builders."""

import gc

import pytest

from outbreak_control.behaviour import NonCompliant
from outbreak_control.config import config_from_dict
from outbreak_control.entities import Outbreak, Person, PersonBaseline
from outbreak_control.errors import SealedSnapshotError
from outbreak_control.model import build_outbreak, initialise_outbreak
from outbreak_control.rng import create_rng_hierarchy
from outbreak_control.statemachine import StateMachine
from outbreak_control.types import Builder, PersonState
from outbreak_control.updater import Updater


def _outbreak(n=3, **policy):
    config = config_from_dict({'simulation': {'population_size': n}, 'policy': policy})
    outbreak = build_outbreak(config)
    initialise_outbreak(outbreak, Updater())
    return outbreak


class TestConstruction:
    def test_people_and_streams(self):
        outbreak = _outbreak(4)
        assert [p.person_id for p in outbreak.people] == [0, 1, 2, 3]
        assert outbreak.person(2) is outbreak.people[2]
        assert len({id(p.rng) for p in outbreak.people} | {id(outbreak.rng)}) == 5
        for person in outbreak.people:
            assert person.outbreak is outbreak
            assert person.machine.state is NonCompliant.ALIVE
            assert person.baseline == PersonBaseline(0.7, 0.1)

    def test_custom_baselines(self):
        config = config_from_dict({'simulation': {'population_size': 2}})
        baselines = [PersonBaseline(0.1, 0.5), PersonBaseline(0.9, 0.0)]
        outbreak = build_outbreak(config, baselines=baselines)
        assert [p.baseline for p in outbreak.people] == baselines
        with pytest.raises(ValueError):
            build_outbreak(config, baselines=baselines[:1])

    def test_duplicate_ids_rejected(self):
        outbreak = _outbreak(1)
        rng = create_rng_hierarchy(0, 0)['outbreak']
        twin = Person(0, outbreak, StateMachine(NonCompliant.ALIVE), rng)
        with pytest.raises(ValueError, match="Duplicate"):
            outbreak.add_people([twin])

    def test_initial_snapshots(self):
        outbreak = _outbreak(3, model="NoControl.DEFAULT")
        assert outbreak.time == 0
        assert outbreak.current_state.policy == "NoControl.DEFAULT"
        assert outbreak.current_state.population_size == 3
        assert outbreak.current_state.behaviour_counts == (("NonCompliant.ALIVE", 3),)
        assert outbreak.current_history is None

    def test_uninitialised_entity(self):
        config = config_from_dict({'simulation': {'population_size': 1}})
        outbreak = build_outbreak(config)
        with pytest.raises(RuntimeError):
            outbreak.current_state

    def test_initialise_twice(self):
        outbreak = _outbreak(1)
        with pytest.raises(SealedSnapshotError):
            outbreak.people[0].initialise(Builder(PersonState, person_id=0, time=0))

    def test_weak_back_reference(self):
        outbreak = _outbreak(1)
        person = outbreak.people[0]
        del outbreak
        gc.collect()
        with pytest.raises(RuntimeError, match="outlived"):
            person.outbreak


class TestSequences:
    def test_one_state_and_history_per_time(self):
        outbreak = _outbreak(2)
        updater = Updater()
        for _ in range(4):
            updater.update(outbreak)
        for entity in (outbreak, *outbreak.people):
            assert [s.time for s in entity.states] == [0, 1, 2, 3, 4]
            assert [h.time for h in entity.history] == [1, 2, 3, 4]
            assert entity.state_at(3) is entity.states[3]
            assert entity.history_at(1) is entity.history[0]
            assert entity.history_at(0) is None
            with pytest.raises(IndexError):
                entity.state_at(5)

    def test_history_describes_previous_state(self):
        outbreak = _outbreak(1, model="ReactiveLockdown.MONITOR")
        updater = Updater()
        updater.update(outbreak)
        assert outbreak.history_at(1).policy == outbreak.state_at(0).policy

    def test_builders_closed_between_periods(self):
        outbreak = _outbreak(1)
        with pytest.raises(SealedSnapshotError):
            outbreak.next_state
        outbreak.prepare_update()
        assert outbreak.next_state.time == 1
        assert outbreak.next_history.time == 1
        with pytest.raises(SealedSnapshotError):
            outbreak.prepare_update()

    def test_publish_twice(self):
        outbreak = _outbreak(1)
        person = outbreak.people[0]
        person.prepare_update()
        person.publish_history()
        with pytest.raises(SealedSnapshotError):
            person.publish_history()
        person.update_state()
        person.publish_state()
        with pytest.raises(SealedSnapshotError):
            person.publish_state()

    def test_sealed_snapshots_are_immutable(self):
        outbreak = _outbreak(1)
        Updater().update(outbreak)
        with pytest.raises(AttributeError):
            outbreak.current_state.cumulative_infections = 10

    def test_behaviour_counts(self):
        outbreak = _outbreak(3)
        outbreak.people[1].machine.reset_to(NonCompliant.DEAD)
        assert dict(outbreak.behaviour_counts()) == {
            "NonCompliant.ALIVE": 2, "NonCompliant.DEAD": 1,
        }
        assert isinstance(outbreak, Outbreak)
