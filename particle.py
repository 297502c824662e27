# particle.py
"""
Manages the state of all particles in the simulation.

This module defines the ParticleField class, the authoritative array of
particle records. Each record is three float32 values (x, y, phi) laid
out contiguously, which is also the layout handed to the collective
transport.
"""
import logging
import numpy as np
from typing import Optional

from constants import PARTICLE_WIDTH, TWO_PI
from utils import ConfigurationError

# --- Data Contracts ---
#
# class ParticleField:
#   - __init__(self, particle_count: int):
#     - Inputs:
#       - particle_count: int, number of particles N. Must be positive.
#     - Side Effects: Allocates a zeroed (N, 3) float32 buffer.
#     - Invariants:
#       - The storage is C-contiguous, dtype float32, shape (N, 3).
#       - The shape never changes after construction.
#
#   - seed(self, rng: np.random.Generator) -> None:
#     - Fills x, y with U[0, 1) and phi with U[0, 2*pi).
#
#   - snapshot(self) -> np.ndarray:
#     - Returns a read-only view of the current storage.
#
#   - replace_all(self, buffer: np.ndarray) -> np.ndarray:
#     - Swaps in `buffer` as the new storage and returns the previous one.
#     - Raises ValueError if `buffer` has the wrong shape, dtype or layout.

PARTICLE_DTYPE = np.float32


class ParticleField:
    """
    A fixed-length field of particles addressed by index.
    """
    def __init__(self, particle_count: int):
        if particle_count <= 0:
            raise ConfigurationError(
                f"particle_count must be positive, got {particle_count}."
            )
        self.particle_count = int(particle_count)
        self._state = np.zeros((self.particle_count, PARTICLE_WIDTH), dtype=PARTICLE_DTYPE)

        logging.debug(
            f"ParticleField allocated for {self.particle_count} particles. "
            f"Buffer shape: {self._state.shape}, {self._state.nbytes} bytes."
        )

    @classmethod
    def from_array(cls, array) -> "ParticleField":
        """Builds a field holding a copy of an explicit (N, 3) state."""
        state = np.array(array, dtype=PARTICLE_DTYPE, order='C', ndmin=2)
        field = cls(state.shape[0])
        field.replace_all(state)
        return field

    @property
    def shape(self):
        return self._state.shape

    def __len__(self) -> int:
        return self.particle_count

    def seed(self, rng: np.random.Generator) -> None:
        """
        Fills every particle with a uniformly random position and heading.

        Args:
            rng (np.random.Generator): Source of randomness. Only the root
                rank seeds; the other ranks receive the field by broadcast.
        """
        state = rng.random((self.particle_count, PARTICLE_WIDTH), dtype=PARTICLE_DTYPE)
        state[:, 2] *= PARTICLE_DTYPE(TWO_PI)
        self._state = state
        logging.info(f"ParticleField seeded with {self.particle_count} random particles.")

    def snapshot(self) -> np.ndarray:
        view = self._state.view()
        view.flags.writeable = False
        return view

    def allocate_like(self) -> np.ndarray:
        """Returns an uninitialised buffer that `replace_all` will accept."""
        return np.empty_like(self._state)

    def replace_all(self, buffer: np.ndarray) -> np.ndarray:
        """
        Swaps the field's storage for `buffer` in a single assignment.

        Returns:
            np.ndarray: The previous storage, free to be reused by the caller.
        """
        if not isinstance(buffer, np.ndarray):
            raise ValueError("replace_all expects a numpy array.")
        if buffer.shape != self._state.shape:
            raise ValueError(
                f"Buffer shape {buffer.shape} does not match field shape {self._state.shape}."
            )
        if buffer.dtype != PARTICLE_DTYPE:
            raise ValueError(f"Buffer dtype must be float32, got {buffer.dtype}.")
        if not buffer.flags.c_contiguous or not buffer.flags.writeable:
            raise ValueError("Buffer must be a writeable C-contiguous array.")

        previous, self._state = self._state, buffer
        return previous

    def order_parameter(self, snapshot: Optional[np.ndarray] = None) -> float:
        """
        Polar order |<exp(i*phi)>|: 1.0 when all headings agree, ~0 when random.
        """
        phi = (self._state if snapshot is None else snapshot)[:, 2].astype(np.float64)
        return float(np.hypot(np.cos(phi).mean(), np.sin(phi).mean()))
