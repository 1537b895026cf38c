"""Tests for the numpy differential evolution kernels."""

import numpy as np
import pytest

from cudevo.backends.base import ComputeBackend
from cudevo.kernels import host_kernels as hk


def new_state(pop_size, first_seed=1):
    state = np.zeros(pop_size, dtype=ComputeBackend.rng_state_dtype)
    seeds = np.arange(first_seed, first_seed + pop_size, dtype=np.uint32)
    hk.seed_states(state, seeds)
    return state


def test_seeding_is_deterministic():
    first = new_state(5)
    second = new_state(5)
    np.testing.assert_array_equal(first["s0"], second["s0"])
    np.testing.assert_array_equal(first["s1"], second["s1"])
    assert len(np.unique(first["s0"])) == 5


def test_uniform_range():
    state = new_state(1000)
    draws = np.concatenate([hk.uniform(state) for _ in range(10)])
    assert draws.min() >= 0.0
    assert draws.max() < 1.0
    assert abs(draws.mean() - 0.5) < 0.02


def test_init_draws_normal_population():
    pop_size, attr_count = 4000, 2
    state = np.zeros(pop_size, dtype=ComputeBackend.rng_state_dtype)
    seeds = np.random.default_rng(3).integers(0, 2 ** 32, pop_size,
                                              dtype=np.uint32)
    pop = np.zeros(pop_size * attr_count)
    hk.init(state, seeds, pop, pop_size, attr_count, 2.0, 0.5)
    assert np.all(np.isfinite(pop))
    assert abs(pop.mean() - 2.0) < 0.05
    assert abs(pop.std() - 0.5) < 0.05


def test_random_index_bounds():
    state = new_state(500)
    for _ in range(20):
        picks = hk.random_index(state, 7)
        assert picks.min() >= 0
        assert picks.max() <= 6


def test_donors_distinct_for_four_or_more():
    pop_size = 6
    state = new_state(pop_size)
    members = np.arange(pop_size)
    for _ in range(50):
        a, b, c = hk._draw_donors(state, pop_size)
        for donor in (a, b, c):
            assert np.all(donor != members)
        assert np.all(a != b)
        assert np.all(a != c)
        assert np.all(b != c)


def test_mutate_forces_one_attribute():
    pop_size, attr_count = 16, 5
    state = new_state(pop_size)
    base = np.random.default_rng(0).normal(size=pop_size * attr_count)
    trial = np.zeros_like(base)
    hk.mutate(state, base, trial, pop_size, attr_count, 0.6, 1e-12)
    changed = (trial != base).reshape(pop_size, attr_count).sum(axis=1)
    np.testing.assert_array_equal(changed, np.ones(pop_size))


def test_mutate_full_crossover_uses_mutant():
    pop_size, attr_count = 8, 3
    state = new_state(pop_size)
    base = np.random.default_rng(1).normal(size=pop_size * attr_count)
    trial = np.zeros_like(base)
    hk.mutate(state, base, trial, pop_size, attr_count, 0.6, 1.0)
    assert np.all(trial != base)


def test_mutate_leaves_base_untouched():
    pop_size, attr_count = 8, 3
    state = new_state(pop_size)
    base = np.random.default_rng(2).normal(size=pop_size * attr_count)
    snapshot = base.copy()
    hk.mutate(state, base, np.zeros_like(base), pop_size, attr_count, 0.5,
              0.5)
    np.testing.assert_array_equal(base, snapshot)


@pytest.mark.parametrize("pop_size", [1, 2, 3])
def test_mutate_small_populations(pop_size):
    state = new_state(pop_size)
    base = np.arange(float(pop_size * 2))
    trial = np.full_like(base, np.nan)
    hk.mutate(state, base, trial, pop_size, 2, 0.6, 0.5)
    assert np.all(np.isfinite(trial))


class TestSelect:
    def run(self, cand_costs, trial_costs):
        pop_size, attr_count = len(cand_costs), 2
        cand_pop = np.arange(pop_size * attr_count, dtype=np.float64)
        trial_pop = -cand_pop - 1.0
        out_pop = np.zeros_like(cand_pop)
        out_costs = np.zeros(pop_size)
        hk.select(cand_pop, np.asarray(cand_costs, dtype=np.float64),
                  trial_pop, np.asarray(trial_costs, dtype=np.float64),
                  out_pop, out_costs, pop_size, attr_count)
        return (cand_pop.reshape(pop_size, attr_count),
                trial_pop.reshape(pop_size, attr_count),
                out_pop.reshape(pop_size, attr_count), out_costs)

    def test_strictly_better_trial_wins(self):
        cand, trial, out, costs = self.run([3.0, 1.0], [2.0, 5.0])
        np.testing.assert_array_equal(costs, [2.0, 1.0])
        np.testing.assert_array_equal(out[0], trial[0])
        np.testing.assert_array_equal(out[1], cand[1])

    def test_ties_keep_candidate(self):
        cand, _, out, costs = self.run([1.0, 2.0], [1.0, 2.0])
        np.testing.assert_array_equal(out, cand)
        np.testing.assert_array_equal(costs, [1.0, 2.0])

    def test_nan_trial_keeps_candidate(self):
        cand, _, out, costs = self.run([1.0, 2.0], [np.nan, np.nan])
        np.testing.assert_array_equal(out, cand)
        np.testing.assert_array_equal(costs, [1.0, 2.0])

    def test_nan_candidate_is_kept(self):
        # NaN compares false, so even a finite trial cannot replace it
        cand, _, out, costs = self.run([np.nan], [0.0])
        np.testing.assert_array_equal(out, cand)
        assert np.isnan(costs[0])

    def test_costs_never_increase(self):
        rng = np.random.default_rng(5)
        cand_costs = rng.random(50)
        trial_costs = rng.random(50)
        _, _, _, costs = self.run(cand_costs, trial_costs)
        assert np.all(costs <= cand_costs)
        np.testing.assert_array_equal(
            costs, np.minimum(cand_costs, trial_costs)
        )
