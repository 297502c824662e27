# decomposer.py
"""
Splits the particle update across worker ranks.

Rank k owns the contiguous index range [k*m, (k+1)*m) with m = N / P. Each
step every rank integrates its own range against its full local copy of
the field, then an all-gather rebuilds the whole field on every rank in
rank order. The all-gather doubles as the step barrier.
"""
import logging
import numpy as np
from typing import Optional, Tuple

from constants import PARTICLE_WIDTH, ROOT_RANK
from particle import ParticleField
from simulation import Integrator
from transport import Transport
from utils import ConfigurationError

# --- Data Contracts ---
#
# class Decomposer:
#   - __init__(self, field, integrator, transport):
#     - Raises ConfigurationError unless the particle count is a multiple
#       of the world size.
#     - Side Effects: Allocates the slice buffer (m, 3) and the spare field
#       buffer (N, 3) once; they are reused every step.
#
#   - distribute(self, rng=None) -> None:
#     - The root rank seeds the field when `rng` is given, then broadcasts
#       it. Must be called by every rank before the first step.
#
#   - step(self) -> np.ndarray:
#     - Outputs: read-only snapshot of the new field, identical on all ranks.
#     - Invariants: The field is replaced whole; no rank starts step t+1
#       before all ranks contributed to step t.


class Decomposer:
    """
    Drives one synchronous step of the distributed update.
    """
    def __init__(self, field: ParticleField, integrator: Integrator, transport: Transport):
        self.field = field
        self.integrator = integrator
        self.transport = transport

        particle_count = field.particle_count
        world_size = transport.world_size
        if particle_count % world_size != 0:
            msg = (
                f"Configuration error: {particle_count} particles cannot be split evenly "
                f"across {world_size} ranks. The particle count must be a multiple "
                f"of the number of ranks."
            )
            logging.critical(msg)
            raise ConfigurationError(msg)

        self.slice_size = particle_count // world_size
        self.start, self.stop = self.slice_bounds(transport.rank)

        # Double buffering: the integrator writes the local slice, the
        # all-gather fills the spare field buffer, which is then swapped in.
        self._slice = np.empty((self.slice_size, PARTICLE_WIDTH), dtype=np.float32)
        self._spare = field.allocate_like()

        logging.info(
            f"Decomposer ready: rank {transport.rank}/{world_size} owns particles "
            f"[{self.start}, {self.stop}) of {particle_count}."
        )

    def slice_bounds(self, rank: int) -> Tuple[int, int]:
        """Returns the half-open index range updated by `rank`."""
        if not 0 <= rank < self.transport.world_size:
            raise ValueError(f"Rank {rank} outside world of size {self.transport.world_size}.")
        return rank * self.slice_size, (rank + 1) * self.slice_size

    def distribute(self, rng: Optional[np.random.Generator] = None) -> None:
        """
        Gives every rank the same initial field.

        Args:
            rng: Generator used by the root rank to seed the field. When
                None the root's current contents are broadcast as they are.
        """
        if self.transport.is_root and rng is not None:
            self.field.seed(rng)

        buffer = self._spare
        if self.transport.is_root:
            np.copyto(buffer, self.field.snapshot())
        self.transport.broadcast(buffer, root=ROOT_RANK)
        self._spare = self.field.replace_all(buffer)
        logging.debug(f"Initial field received on rank {self.transport.rank}.")

    def step(self) -> np.ndarray:
        """
        Advances the whole field by one time step.
        """
        snapshot = self.field.snapshot()
        self.integrator.integrate(snapshot, self.start, self.stop, out=self._slice)
        self.transport.all_gather(self._slice, self._spare)
        self._spare = self.field.replace_all(self._spare)
        return self.field.snapshot()
