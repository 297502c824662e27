from __future__ import annotations

import numpy as np
import pytest

from decomposer import Decomposer
from particle import ParticleField
from simulation import Integrator, SimulationParameters
from transport import LoopbackTransport
from utils import ConfigurationError


def _run(transport, particle_count: int, steps: int, seed: int = 2024):
    """Seeds on the root, distributes, steps, and returns the trajectory copies."""
    params = SimulationParameters(particle_count=particle_count, seed=seed)
    field = ParticleField(particle_count)
    decomposer = Decomposer(field, Integrator(params), transport)
    rng = np.random.default_rng(seed) if transport.is_root else None
    decomposer.distribute(rng)

    trajectory = [field.snapshot().copy()]
    for _ in range(steps):
        trajectory.append(decomposer.step().copy())
    return trajectory


def test_indivisible_particle_count_is_rejected(run_ranks) -> None:
    def target(transport):
        field = ParticleField(10)
        with pytest.raises(ConfigurationError):
            Decomposer(field, Integrator(SimulationParameters(particle_count=10)), transport)
        return True

    assert run_ranks(3, target) == [True, True, True]


def test_slice_bounds_cover_the_field_in_rank_order(run_ranks) -> None:
    def target(transport):
        field = ParticleField(12)
        decomposer = Decomposer(field, Integrator(SimulationParameters(particle_count=12)), transport)
        return decomposer.start, decomposer.stop, [decomposer.slice_bounds(k) for k in range(3)]

    results = run_ranks(3, target)

    assert [(start, stop) for start, stop, _ in results] == [(0, 4), (4, 8), (8, 12)]
    assert results[0][2] == [(0, 4), (4, 8), (8, 12)]


def test_distribute_gives_every_rank_the_root_field(run_ranks) -> None:
    results = run_ranks(4, lambda transport: _run(transport, 16, 0)[0])

    expected = ParticleField(16)
    expected.seed(np.random.default_rng(2024))
    for initial in results:
        assert initial.tobytes() == expected.snapshot().tobytes()


def test_rank_fields_are_byte_identical_after_every_gather(run_ranks) -> None:
    results = run_ranks(4, lambda transport: _run(transport, 16, 8))

    for step in range(9):
        reference = results[0][step].tobytes()
        for trajectory in results[1:]:
            assert trajectory[step].tobytes() == reference


def test_decomposition_equivalence_one_and_three_ranks(run_ranks) -> None:
    single = _run(LoopbackTransport(), 12, 10)
    split = run_ranks(3, lambda transport: _run(transport, 12, 10))[0]

    for a, b in zip(single, split):
        assert np.max(np.abs(a - b)) <= 1e-5


def test_decomposition_equivalence_two_and_four_ranks(run_ranks) -> None:
    two = run_ranks(2, lambda transport: _run(transport, 40, 15))[0]
    four = run_ranks(4, lambda transport: _run(transport, 40, 15))[0]

    np.testing.assert_allclose(two[-1], four[-1], atol=1e-5)


def test_runs_are_deterministic() -> None:
    first = _run(LoopbackTransport(), 50, 20, seed=5)
    second = _run(LoopbackTransport(), 50, 20, seed=5)

    for a, b in zip(first, second):
        assert a.tobytes() == b.tobytes()


def test_step_matches_direct_integration() -> None:
    params = SimulationParameters(particle_count=25)
    integrator = Integrator(params)
    field = ParticleField(25)
    decomposer = Decomposer(field, integrator, LoopbackTransport())
    decomposer.distribute(np.random.default_rng(8))
    initial = field.snapshot().copy()

    after = decomposer.step()

    np.testing.assert_array_equal(after, integrator.integrate(initial, 0, 25))


def test_step_reuses_two_buffers() -> None:
    field = ParticleField(6)
    decomposer = Decomposer(field, Integrator(SimulationParameters(particle_count=6)), LoopbackTransport())
    decomposer.distribute(np.random.default_rng(1))

    bases = set()
    for _ in range(6):
        snapshot = decomposer.step()
        bases.add(snapshot.base.__array_interface__['data'][0])

    assert len(bases) == 2


def test_containment_and_length_over_long_run() -> None:
    particle_count = 1000
    field = ParticleField(particle_count)
    decomposer = Decomposer(
        field, Integrator(SimulationParameters(particle_count=particle_count)), LoopbackTransport()
    )
    decomposer.distribute(np.random.default_rng(31337))

    for _ in range(1000):
        snapshot = decomposer.step()
        assert len(field) == particle_count
        assert snapshot.shape == (particle_count, 3)
        positions = snapshot[:, :2]
        assert np.all(positions >= 0.0)
        assert np.all(positions < 1.0)
