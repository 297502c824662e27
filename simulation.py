# simulation.py
"""
Handles the core simulation logic.

This module defines the Integrator, which advances a slice of the particle
field by one time step. Every particle steers toward the phase-lagged mean
heading of the particles within the interaction radius, moves at constant
speed along its old heading and wraps around the unit torus.
"""
import logging
import numpy as np
from dataclasses import dataclass
from typing import Dict, Any, Optional
from numba import jit

import constants
from constants import PARTICLE_WIDTH
from utils import ConfigurationError

# --- Data Contracts ---
#
# class Integrator:
#   - __init__(self, params: SimulationParameters):
#     - Side Effects: Stores the model constants as float32 scalars.
#
#   - integrate(self, snapshot, start, stop, out=None) -> np.ndarray:
#     - Inputs:
#       - snapshot: (N, 3) float32 array, never modified.
#       - start, stop: half-open index range, 0 <= start <= stop <= N.
#       - out: optional (stop - start, 3) float32 array to write into.
#     - Outputs: (stop - start, 3) float32 array with the next-step records.
#     - Invariants: Output positions lie in [0, 1). Neighbours are summed
#       in ascending index order, self included.


@dataclass(frozen=True)
class SimulationParameters:
    """Model constants shared by every rank."""
    particle_count: int = constants.PARTICLE_COUNT
    speed: float = constants.SPEED
    interaction_radius: float = constants.INTERACTION_RADIUS
    phase_lag: float = constants.PHASE_LAG
    coupling: float = constants.COUPLING
    delta_time: float = constants.DELTA_TIME
    seed: Optional[int] = None

    @classmethod
    def from_config(cls, params: Dict[str, Any]) -> "SimulationParameters":
        """
        Builds the parameters from the `simulation_parameters` config section.

        Raises:
            ConfigurationError: If a value has the wrong type or is out of range.
        """
        defaults = cls()
        try:
            parameters = cls(
                particle_count=int(params.get('particle_count', defaults.particle_count)),
                speed=float(params.get('speed', defaults.speed)),
                interaction_radius=float(params.get('interaction_radius', defaults.interaction_radius)),
                phase_lag=float(params.get('phase_lag', defaults.phase_lag)),
                coupling=float(params.get('coupling', defaults.coupling)),
                delta_time=float(params.get('delta_time', defaults.delta_time)),
                seed=params.get('seed', defaults.seed),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid simulation parameter: {e}") from e
        parameters.validate()
        return parameters

    def validate(self) -> None:
        if self.particle_count <= 0:
            raise ConfigurationError(
                f"particle_count must be positive, got {self.particle_count}."
            )
        if self.interaction_radius < 0:
            raise ConfigurationError(
                f"interaction_radius must be non-negative, got {self.interaction_radius}."
            )
        # A single wrap correction per step is only enough while one step
        # moves a particle less than the torus side.
        if abs(self.speed * self.delta_time) >= 1.0:
            raise ConfigurationError(
                f"|speed * delta_time| must be below 1, got {self.speed * self.delta_time}."
            )
        if self.seed is not None and not isinstance(self.seed, int):
            raise ConfigurationError(f"seed must be an integer or null, got {self.seed!r}.")


@jit(nopython=True)
def _integrate_numba(snapshot, out, start, stop, step_length, radius_sq, phase_lag, coupling, delta_time):
    """
    Numba-jitted kernel for the dense neighbour scan and the update.

    All arithmetic stays in float32; the scalar arguments must be float32.
    """
    particle_count = snapshot.shape[0]
    zero = np.float32(0.0)
    one = np.float32(1.0)

    for i in range(start, stop):
        x = snapshot[i, 0]
        y = snapshot[i, 1]
        phi = snapshot[i, 2]

        dphi = zero
        near_count = zero

        # Plain Euclidean distance: neighbours are not searched across the
        # torus seam.
        for j in range(particle_count):
            dx = x - snapshot[j, 0]
            dy = y - snapshot[j, 1]
            if dx * dx + dy * dy < radius_sq:
                dphi += np.sin(snapshot[j, 2] - phi - phase_lag)
                near_count += one

        # Advect along the heading of the previous step
        new_x = x + step_length * np.cos(phi)
        new_y = y + step_length * np.sin(phi)

        # Single correction is enough while |speed * dt| < 1
        if new_x < zero:
            new_x += one
        if new_x >= one:
            new_x -= one
        if new_y < zero:
            new_y += one
        if new_y >= one:
            new_y -= one

        new_phi = phi
        if near_count > zero:
            new_phi = phi + delta_time * (coupling / near_count) * dphi

        k = i - start
        out[k, 0] = new_x
        out[k, 1] = new_y
        out[k, 2] = new_phi


class Integrator:
    """
    Pure update rule over a snapshot of the field.
    """
    def __init__(self, params: SimulationParameters):
        """
        Initializes the integrator.

        Args:
            params (SimulationParameters): Model constants.
        """
        self.params = params
        # Keep every constant in float32 so the kernel never promotes.
        self.speed = np.float32(params.speed)
        self.delta_time = np.float32(params.delta_time)
        self.step_length = np.float32(self.speed * self.delta_time)
        self.radius = np.float32(params.interaction_radius)
        self.radius_sq = np.float32(self.radius * self.radius)
        self.phase_lag = np.float32(params.phase_lag)
        self.coupling = np.float32(params.coupling)

        logging.info(
            f"Integrator initialized: v={params.speed}, r={params.interaction_radius}, "
            f"alpha={params.phase_lag}, K={params.coupling}, dt={params.delta_time}."
        )

    def integrate(self, snapshot: np.ndarray, start: int, stop: int,
                  out: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Computes the next-step records for particles [start, stop).

        Returns:
            np.ndarray: The (stop - start, 3) slice, `out` itself if given.
        """
        particle_count = snapshot.shape[0]
        if snapshot.ndim != 2 or snapshot.shape[1] != PARTICLE_WIDTH:
            raise ValueError(f"Snapshot must have shape (N, 3), got {snapshot.shape}.")
        if snapshot.dtype != np.float32:
            raise ValueError(f"Snapshot dtype must be float32, got {snapshot.dtype}.")
        if not 0 <= start <= stop <= particle_count:
            raise ValueError(
                f"Invalid slice [{start}, {stop}) for a field of {particle_count} particles."
            )

        if out is None:
            out = np.empty((stop - start, PARTICLE_WIDTH), dtype=np.float32)
        elif out.shape != (stop - start, PARTICLE_WIDTH) or out.dtype != np.float32:
            raise ValueError(
                f"Output buffer must be float32 with shape {(stop - start, PARTICLE_WIDTH)}, "
                f"got {out.dtype} {out.shape}."
            )

        if stop > start:
            _integrate_numba(
                snapshot, out, start, stop,
                self.step_length, self.radius_sq, self.phase_lag,
                self.coupling, self.delta_time
            )
        return out
