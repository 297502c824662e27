# main.py
"""
Main entry point for the Vicsek swarm simulation.

This script orchestrates the entire simulation lifecycle on every rank:
1. Loads configuration from `config.json` (or the file named by the
   VICSEK_CONFIG environment variable).
2. Creates the collective transport and initializes logging for this rank.
3. Seeds the field on rank 0 and broadcasts it to every rank.
4. Runs the step loop until quit or `max_steps`.
5. Tears down the window (rank 0) and the transport.

Single process:   python main.py
Under MPI:        mpiexec -n 4 python main.py   (with "transport": "mpi")
"""
import logging
import os
import sys
import threading
import time
import cProfile
import pstats
import io
import numpy as np
from typing import Any, Callable, Dict, List, Optional

from constants import (
    EXIT_OK, EXIT_RUNTIME_ERROR, EXIT_CONFIG_ERROR, MAX_STEPS,
    LOG_THROTTLE_STEPS, TRANSPORT
)
from utils import (
    ConfigurationError, SinkError, TransportError,
    THREAD_RANK_PREFIX, setup_logging, load_config, get_section
)

DEFAULT_CONFIG_PATH = 'config.json'

# --- Data Contracts ---
#
# class Driver:
#   - __init__(self, decomposer, transport, sink=None, run_params=None):
#     - sink: only on the root rank; None elsewhere.
#     - run_params: the `run_control` config section.
#
#   - run(self) -> int:
#     - Outputs: number of completed steps, identical on every rank.
#     - Side Effects: Steps the field, draws on the root rank, logs timing.
#     - Invariants: The quit flag is OR-reduced before every step, so all
#       ranks leave the loop on the same iteration.


class StepTimer:
    """Accumulates per-step update and draw times in milliseconds."""

    def __init__(self):
        self.steps = 0
        self.total_update_ms = 0.0
        self.total_draw_ms = 0.0

    def record(self, update_ms: float, draw_ms: float) -> None:
        self.steps += 1
        self.total_update_ms += update_ms
        self.total_draw_ms += draw_ms

    @property
    def average_update_ms(self) -> float:
        return self.total_update_ms / self.steps if self.steps else 0.0

    @property
    def average_draw_ms(self) -> float:
        return self.total_draw_ms / self.steps if self.steps else 0.0


class Driver:
    """
    The step loop run by every rank.
    """
    def __init__(self, decomposer, transport, sink=None, run_params: Optional[Dict[str, Any]] = None):
        run_params = run_params if run_params is not None else {}
        self.decomposer = decomposer
        self.transport = transport
        self.sink = sink
        try:
            self.max_steps = int(run_params.get('max_steps', MAX_STEPS))
            self.log_throttle = int(run_params.get('log_throttle_steps', LOG_THROTTLE_STEPS))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid run_control value: {e}") from e
        if self.max_steps < 0 or self.log_throttle <= 0:
            raise ConfigurationError(
                "run_control.max_steps must be >= 0 and log_throttle_steps must be > 0."
            )
        self.timer = StepTimer()

    def _poll_quit(self) -> bool:
        quit_requested = self.sink.poll_quit() if self.sink is not None else False
        return self.transport.any_flag(quit_requested)

    def run(self) -> int:
        step_num = 0
        field = self.decomposer.field

        while True:
            if self._poll_quit():
                logging.info(f"Quit requested. Stopping after {step_num} steps.")
                break

            update_start = time.perf_counter()
            snapshot = self.decomposer.step()
            update_end = time.perf_counter()

            if self.sink is not None:
                self.sink.draw(snapshot)
            draw_end = time.perf_counter()

            step_num += 1
            update_ms = (update_end - update_start) * 1000.0
            draw_ms = (draw_end - update_end) * 1000.0
            self.timer.record(update_ms, draw_ms)
            logging.debug(f"Step {step_num} | Update took {update_ms:.2f}ms. Draw took {draw_ms:.2f}ms.")

            # Hot loops must throttle logs
            if step_num % self.log_throttle == 0:
                logging.info(f"Simulation step {step_num}/{self.max_steps or 'inf'}")
                logging.debug(f"Step {step_num} | Order parameter: {field.order_parameter(snapshot):.4f}")

            if self.max_steps and step_num >= self.max_steps:
                logging.info(f"Reached max_steps ({self.max_steps}). Stopping simulation.")
                break

        logging.info(
            f"Average update {self.timer.average_update_ms:.2f}ms, "
            f"average draw {self.timer.average_draw_ms:.2f}ms over {self.timer.steps} steps."
        )
        return step_num


def run_rank(config: Dict[str, Any], transport, sink_factory: Optional[Callable] = None) -> int:
    """
    Builds and runs the engine for one rank. Returns the process exit code.
    """
    from particle import ParticleField
    from simulation import Integrator, SimulationParameters
    from decomposer import Decomposer
    from visualization import create_sink

    sink_factory = sink_factory if sink_factory is not None else create_sink
    sink = None
    try:
        params = SimulationParameters.from_config(get_section(config, 'simulation_parameters'))
        run_params = get_section(config, 'run_control')
        vis_params = get_section(config, 'visualization')

        field = ParticleField(params.particle_count)
        integrator = Integrator(params)
        decomposer = Decomposer(field, integrator, transport)
        driver = Driver(decomposer, transport, run_params=run_params)

        rng = None
        if transport.is_root:
            sink = sink_factory(vis_params)
            driver.sink = sink
            rng = np.random.default_rng(params.seed)
        decomposer.distribute(rng)

        profiler = cProfile.Profile() if run_params.get('profile', False) else None
        if profiler is not None:
            profiler.enable()
        steps = driver.run()
        if profiler is not None:
            profiler.disable()
            _log_profile(profiler)
        logging.info(f"Rank {transport.rank} finished after {steps} steps.")
    except ConfigurationError as e:
        logging.critical(f"Configuration error: {e}")
        print(f"FATAL: {e}", file=sys.stderr)
        # Sink settings are only read on the root rank; the others may
        # already be waiting in the broadcast.
        if transport.world_size > 1:
            transport.abort(EXIT_CONFIG_ERROR)
        return EXIT_CONFIG_ERROR
    except (TransportError, SinkError) as e:
        logging.critical(f"Fatal error on rank {transport.rank}: {e}")
        transport.abort(EXIT_RUNTIME_ERROR)
        return EXIT_RUNTIME_ERROR
    except Exception:
        logging.exception(f"Unexpected error on rank {transport.rank}.")
        transport.abort(EXIT_RUNTIME_ERROR)
        raise
    finally:
        if sink is not None:
            sink.close()

    transport.finalize()
    return EXIT_OK


def _log_profile(profiler: cProfile.Profile) -> None:
    logging.info("--- Performance Profile ---")
    s = io.StringIO()
    # Sort by cumulative time spent in the function
    stats = pstats.Stats(profiler, stream=s).sort_stats('cumtime')
    stats.print_stats(20) # Print top 20 slowest functions
    logging.info(f"\n{s.getvalue()}")


def run_threaded(config: Dict[str, Any], world_size: int, sink_factory: Optional[Callable] = None) -> int:
    """
    Runs `world_size` ranks as threads of this process. Returns the worst exit code.
    """
    from transport import ThreadGroup

    group = ThreadGroup(world_size)
    exit_codes: List[int] = [EXIT_OK] * world_size

    def worker(transport) -> None:
        try:
            exit_codes[transport.rank] = run_rank(config, transport, sink_factory)
        except Exception:
            # Already logged and the group aborted by run_rank.
            exit_codes[transport.rank] = EXIT_RUNTIME_ERROR

    threads = [
        threading.Thread(target=worker, args=(transport,), name=f"{THREAD_RANK_PREFIX}{transport.rank}")
        for transport in group.transports()
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return max(exit_codes)


def main(config_path: Optional[str] = None) -> int:
    """
    The main function to run the simulation. Returns the process exit code.
    """
    path = config_path or os.environ.get('VICSEK_CONFIG', DEFAULT_CONFIG_PATH)

    # Logging is not set up yet, so configuration errors go to stderr.
    try:
        config = load_config(path)
        run_params = get_section(config, 'run_control')
        kind = run_params.get('transport', TRANSPORT)
        transport = None
        if kind == 'threads':
            try:
                world_size = int(run_params.get('world_size', 1))
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid run_control.world_size: {e}") from e
            if world_size <= 0:
                raise ConfigurationError(f"world_size must be positive, got {world_size}.")
        else:
            from transport import create_transport
            transport = create_transport(kind)
        setup_logging(config, transport.rank if transport is not None else 0)
    except ConfigurationError as e:
        print(f"FATAL: Could not start the simulation. Error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    if transport is None:
        logging.info(f"--- Vicsek Swarm Starting ({world_size} thread ranks) ---")
        exit_code = run_threaded(config, world_size)
    else:
        logging.info(
            f"--- Vicsek Swarm Starting (rank {transport.rank} of {transport.world_size}) ---"
        )
        exit_code = run_rank(config, transport)

    logging.info("--- Vicsek Swarm Shutting Down ---")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
