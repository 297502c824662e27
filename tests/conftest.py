import os
import threading

# Pygame must pick the dummy video driver before it is first imported.
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")

import numpy as np
import pytest

from simulation import Integrator, SimulationParameters
from transport import ThreadGroup


@pytest.fixture
def reference_params() -> SimulationParameters:
    return SimulationParameters(particle_count=1, seed=7)


@pytest.fixture
def integrator(reference_params: SimulationParameters) -> Integrator:
    return Integrator(reference_params)


@pytest.fixture
def random_state():
    def make(n: int, seed: int = 0) -> np.ndarray:
        rng = np.random.default_rng(seed)
        state = rng.random((n, 3), dtype=np.float32)
        state[:, 2] *= np.float32(2.0 * np.pi)
        return state
    return make


@pytest.fixture
def run_ranks():
    """Runs `target(transport)` on every rank of a thread group and returns the results."""
    def run(world_size: int, target, timeout: float = 120.0):
        group = ThreadGroup(world_size)
        results = [None] * world_size
        errors = []

        def worker(transport) -> None:
            try:
                results[transport.rank] = target(transport)
            except Exception as e:  # re-raised below on the test thread
                errors.append(e)
                group.abort()

        threads = [
            threading.Thread(target=worker, args=(transport,), daemon=True)
            for transport in group.transports()
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout)
            assert not thread.is_alive(), "rank did not finish: collective deadlock"
        if errors:
            raise errors[0]
        return results
    return run
