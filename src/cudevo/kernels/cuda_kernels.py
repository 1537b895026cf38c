"""Built-in differential evolution kernels for the CUDA backend.

The source of this module is appended to the user's cost-function source and
built as one program, so it only uses absolute imports. Every kernel runs one
thread per population member; populations are flat, row-major
``pop_size * attr_count`` arrays.
"""
from numba import cuda, int64
from numba.cuda.random import (
    init_xoroshiro128p_state,
    xoroshiro128p_normal_float64,
    xoroshiro128p_uniform_float64,
)


@cuda.jit(device=True, inline=True)
def random_index(rng_state, member, upper):
    """Uniform integer in ``[0, upper)`` from ``member``'s generator."""
    k = int64(xoroshiro128p_uniform_float64(rng_state, member) * upper)
    if k >= upper:
        k = upper - 1
    return k


@cuda.jit
def init(rng_state, seeds, pop, pop_size, attr_count, mu, sigma):
    i = cuda.grid(1)
    if i >= pop_size:
        return
    init_xoroshiro128p_state(rng_state, i, seeds[i])
    for j in range(attr_count):
        pop[i * attr_count + j] = (
            mu + sigma * xoroshiro128p_normal_float64(rng_state, i)
        )


@cuda.jit
def mutate(rng_state, base_pop, trial_pop, pop_size, attr_count, shrink,
           crossover):
    """DE/rand/1/bin: ``a + shrink * (b - c)`` crossed with member ``i``.

    Donors are distinct from each other and from ``i`` whenever the
    population has at least four members.
    """
    i = cuda.grid(1)
    if i >= pop_size:
        return
    distinct = pop_size >= 4

    a = random_index(rng_state, i, pop_size)
    while distinct and a == i:
        a = random_index(rng_state, i, pop_size)
    b = random_index(rng_state, i, pop_size)
    while distinct and (b == i or b == a):
        b = random_index(rng_state, i, pop_size)
    c = random_index(rng_state, i, pop_size)
    while distinct and (c == i or c == a or c == b):
        c = random_index(rng_state, i, pop_size)

    forced = random_index(rng_state, i, attr_count)
    row = i * attr_count
    for j in range(attr_count):
        u = xoroshiro128p_uniform_float64(rng_state, i)
        if u < crossover or j == forced:
            trial_pop[row + j] = base_pop[a * attr_count + j] + shrink * (
                base_pop[b * attr_count + j] - base_pop[c * attr_count + j]
            )
        else:
            trial_pop[row + j] = base_pop[row + j]


@cuda.jit
def select(cand_pop, cand_costs, trial_pop, trial_costs, out_pop, out_costs,
           pop_size, attr_count):
    i = cuda.grid(1)
    if i >= pop_size:
        return
    row = i * attr_count
    # Ties and NaN trial costs keep the candidate
    if trial_costs[i] < cand_costs[i]:
        for j in range(attr_count):
            out_pop[row + j] = trial_pop[row + j]
        out_costs[i] = trial_costs[i]
    else:
        for j in range(attr_count):
            out_pop[row + j] = cand_pop[row + j]
        out_costs[i] = cand_costs[i]
