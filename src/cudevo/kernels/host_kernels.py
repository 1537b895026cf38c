"""Built-in differential evolution kernels for the host backend.

numpy counterparts of :mod:`cudevo.kernels.cuda_kernels`. Each kernel
processes the whole population per launch; every member owns an
xoroshiro128+ generator seeded with SplitMix64, as ``numba.cuda.random``
does on the device. The source of this module is appended to the user's
cost-function source and built as one program, so it only uses absolute
imports.
"""
import numpy as np

_U64 = np.uint64
_SPLITMIX_GAMMA = _U64(0x9E3779B97F4A7C15)
_SPLITMIX_MUL1 = _U64(0xBF58476D1CE4E5B9)
_SPLITMIX_MUL2 = _U64(0x94D049BB133111EB)
_DOUBLE_UNIT = 1.0 / float(1 << 53)


def _rotl(x, k):
    return (x << _U64(k)) | (x >> _U64(64 - k))


def seed_states(rng_state, seeds):
    """SplitMix64 of each member's seed into both state words."""
    with np.errstate(over="ignore"):
        z = seeds.astype(np.uint64) + _SPLITMIX_GAMMA
        z = (z ^ (z >> _U64(30))) * _SPLITMIX_MUL1
        z = (z ^ (z >> _U64(27))) * _SPLITMIX_MUL2
        z = z ^ (z >> _U64(31))
    rng_state["s0"] = z
    rng_state["s1"] = z


def next_uint64(rng_state):
    """Advance every member's generator by one step."""
    s0 = rng_state["s0"].copy()
    s1 = rng_state["s1"].copy()
    with np.errstate(over="ignore"):
        result = s0 + s1
    s1 ^= s0
    rng_state["s0"] = _rotl(s0, 55) ^ s1 ^ (s1 << _U64(14))
    rng_state["s1"] = _rotl(s1, 36)
    return result


def uniform(rng_state):
    """One float64 in ``[0, 1)`` per member."""
    return (next_uint64(rng_state) >> _U64(11)).astype(np.float64) \
        * _DOUBLE_UNIT


def normal(rng_state):
    """One standard normal draw per member (Box-Muller)."""
    u1 = 1.0 - uniform(rng_state)
    u2 = uniform(rng_state)
    return np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2)


def random_index(rng_state, upper):
    k = (uniform(rng_state) * upper).astype(np.int64)
    return np.minimum(k, upper - 1)


def _draw_donors(rng_state, pop_size):
    members = np.arange(pop_size)
    donors = []
    for _ in range(3):
        pick = random_index(rng_state, pop_size)
        if pop_size >= 4:
            while True:
                clash = pick == members
                for other in donors:
                    clash |= pick == other
                if not clash.any():
                    break
                pick = np.where(clash, random_index(rng_state, pop_size),
                                pick)
        donors.append(pick)
    return donors


def init(rng_state, seeds, pop, pop_size, attr_count, mu, sigma):
    seed_states(rng_state, seeds)
    values = pop.reshape(pop_size, attr_count)
    for j in range(attr_count):
        values[:, j] = mu + sigma * normal(rng_state)


def mutate(rng_state, base_pop, trial_pop, pop_size, attr_count, shrink,
           crossover):
    """DE/rand/1/bin over the whole population."""
    base = base_pop.reshape(pop_size, attr_count)
    trial = trial_pop.reshape(pop_size, attr_count)
    a, b, c = _draw_donors(rng_state, pop_size)
    forced = random_index(rng_state, attr_count)
    mutant = base[a] + shrink * (base[b] - base[c])
    for j in range(attr_count):
        take = (uniform(rng_state) < crossover) | (forced == j)
        trial[:, j] = np.where(take, mutant[:, j], base[:, j])


def select(cand_pop, cand_costs, trial_pop, trial_costs, out_pop, out_costs,
           pop_size, attr_count):
    # Ties and NaN trial costs keep the candidate
    wins = trial_costs < cand_costs
    out_costs[:] = np.where(wins, trial_costs, cand_costs)
    out_pop.reshape(pop_size, attr_count)[:] = np.where(
        wins[:, None],
        trial_pop.reshape(pop_size, attr_count),
        cand_pop.reshape(pop_size, attr_count),
    )
