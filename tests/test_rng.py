"""Tests for outbreak_control.rng — seeded stream hierarchy and checkpointing."""

import numpy as np
import pytest

from outbreak_control.rng import (
    OBSERVATION_STREAM,
    OUTBREAK_STREAM,
    create_rng_hierarchy,
    get_person_rng,
    restore_rng_state,
    rng_state_snapshot,
)


class TestCreateRngHierarchy:
    def test_returns_correct_keys(self):
        rngs = create_rng_hierarchy(42, n_people=5)
        assert OUTBREAK_STREAM in rngs
        assert OBSERVATION_STREAM in rngs
        for i in range(5):
            assert f'person_{i}' in rngs
        assert len(rngs) == 5 + 2

    def test_generators_are_independent(self):
        """Different streams produce different sequences."""
        rngs = create_rng_hierarchy(42, n_people=4)
        vals = {name: rng.random() for name, rng in rngs.items()}
        assert len(set(vals.values())) == len(vals)

    def test_reproducibility(self):
        rngs1 = create_rng_hierarchy(42, n_people=5)
        rngs2 = create_rng_hierarchy(42, n_people=5)
        for name in rngs1:
            np.testing.assert_array_equal(rngs1[name].random(100), rngs2[name].random(100))

    def test_different_seeds_differ(self):
        a = create_rng_hierarchy(42, n_people=1)[OUTBREAK_STREAM].random(10)
        b = create_rng_hierarchy(43, n_people=1)[OUTBREAK_STREAM].random(10)
        assert not np.array_equal(a, b)

    def test_growing_population_keeps_streams(self):
        """Adding persons does not change existing persons' streams."""
        small = create_rng_hierarchy(7, n_people=3)
        large = create_rng_hierarchy(7, n_people=30)
        for name in small:
            np.testing.assert_array_equal(small[name].random(20), large[name].random(20))

    def test_zero_people(self):
        rngs = create_rng_hierarchy(42, n_people=0)
        assert set(rngs) == {OUTBREAK_STREAM, OBSERVATION_STREAM}

    def test_negative_seed(self):
        with pytest.raises(ValueError):
            create_rng_hierarchy(-1, n_people=2)


class TestGetPersonRng:
    def test_lookup(self):
        rngs = create_rng_hierarchy(42, n_people=3)
        assert get_person_rng(rngs, 2) is rngs['person_2']

    def test_missing(self):
        rngs = create_rng_hierarchy(42, n_people=3)
        with pytest.raises(KeyError):
            get_person_rng(rngs, 3)


class TestCheckpointing:
    def test_snapshot_and_restore(self):
        rngs = create_rng_hierarchy(42, n_people=2)
        state = rng_state_snapshot(rngs)
        first = {name: rng.random(5) for name, rng in rngs.items()}
        restore_rng_state(rngs, state)
        for name, rng in rngs.items():
            np.testing.assert_array_equal(rng.random(5), first[name])

    def test_restore_unknown_stream(self):
        rngs = create_rng_hierarchy(42, n_people=1)
        with pytest.raises(KeyError):
            restore_rng_state(rngs, {'person_9': rngs['person_0'].bit_generator.state})
