# visualization.py
"""
Handles the visualization of the particle field using Pygame.

Each particle is drawn as a short line segment starting at its position
and pointing along its heading. Only the root rank creates a sink.
"""
import logging
import pygame
import numpy as np
from typing import Any, Dict, Optional, Tuple

from constants import (
    SCREEN_WIDTH, SCREEN_HEIGHT, LINE_LENGTH, FPS, WINDOW_TITLE,
    BACKGROUND_COLOR, LINE_COLOR
)
from utils import ConfigurationError, SinkError


# --- Data Contracts ---
#
# segment_endpoints(snapshot, width, height, line_length) -> np.ndarray:
#   - Inputs: (N, 3) snapshot, viewport size in pixels, segment length.
#   - Outputs: (N, 4) float array of (x0, y0, x1, y1) per particle, with
#     (x0, y0) = (x*W, y*H) and (x1, y1) = (x0 + L cos phi, y0 + L sin phi).
#     Nothing is clipped.
#
# class Visualizer:
#   - __init__(self, vis_params: Dict[str, Any]):
#     - Side Effects: Initializes Pygame and opens the window.
#     - Raises SinkError if the window cannot be created.
#
#   - poll_quit(self) -> bool:
#     - Drains the event queue without blocking. True if QUIT (or Escape)
#       was seen.
#
#   - draw(self, snapshot: np.ndarray) -> None:
#     - Clears the window, draws one segment per particle, presents.
#
#   - close(self) -> None


def segment_endpoints(snapshot: np.ndarray, width: float, height: float, line_length: float) -> np.ndarray:
    """Computes the screen-space segment for every particle."""
    x = snapshot[:, 0].astype(np.float64) * width
    y = snapshot[:, 1].astype(np.float64) * height
    phi = snapshot[:, 2].astype(np.float64)
    return np.column_stack((x, y, x + line_length * np.cos(phi), y + line_length * np.sin(phi)))


def _parse_color(value: Any, default: Tuple[int, int, int]) -> pygame.Color:
    if value is None:
        return pygame.Color(default)
    try:
        return pygame.Color(value)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid color {value!r} in visualization config: {e}") from e


class HeadlessSink:
    """
    A sink with no window. It never reports a quit and draws nothing;
    runs end through `max_steps`.
    """
    def __init__(self, vis_params: Optional[Dict[str, Any]] = None):
        del vis_params
        self.frames = 0
        logging.info("Headless sink in use; no window will be opened.")

    def poll_quit(self) -> bool:
        return False

    def draw(self, snapshot: np.ndarray) -> None:
        self.frames += 1

    def close(self) -> None:
        logging.info(f"Headless sink closed after {self.frames} frames.")


class Visualizer:
    """
    Renders the particle field into a Pygame window.
    """
    def __init__(self, vis_params: Optional[Dict[str, Any]] = None):
        """
        Initializes Pygame and the display window.
        """
        vis_params = vis_params if vis_params is not None else {}
        self.width = int(vis_params.get('width', SCREEN_WIDTH))
        self.height = int(vis_params.get('height', SCREEN_HEIGHT))
        self.line_length = float(vis_params.get('line_length', LINE_LENGTH))
        self.fps = int(vis_params.get('fps', FPS))
        self.background_color = _parse_color(vis_params.get('background_color'), BACKGROUND_COLOR)
        self.line_color = _parse_color(vis_params.get('line_color'), LINE_COLOR)
        if self.width <= 0 or self.height <= 0:
            raise ConfigurationError(f"Window size must be positive, got {self.width}x{self.height}.")

        pygame.init()
        try:
            self.screen = pygame.display.set_mode((self.width, self.height))
        except pygame.error as e:
            logging.critical(f"Error creating window: {e}")
            pygame.quit()
            raise SinkError(f"Could not create a {self.width}x{self.height} window: {e}") from e

        pygame.display.set_caption(WINDOW_TITLE)
        self.clock = pygame.time.Clock()

        logging.info(f"Visualizer initialized with Pygame display ({self.width}x{self.height}).")

    def poll_quit(self) -> bool:
        """
        Drains pending events. Returns True if the user asked to quit.
        """
        quit_requested = False
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                logging.info("Quit event received.")
                quit_requested = True
            elif event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
                logging.info("ESC key pressed. Requesting quit.")
                quit_requested = True
        return quit_requested

    def draw(self, snapshot: np.ndarray) -> None:
        """Draws one segment per particle and presents the frame."""
        self.screen.fill(self.background_color)
        for x0, y0, x1, y1 in segment_endpoints(snapshot, self.width, self.height, self.line_length):
            pygame.draw.line(self.screen, self.line_color, (x0, y0), (x1, y1))
        pygame.display.flip()

        if self.fps > 0:
            self.clock.tick(self.fps)

    def close(self):
        """Shuts down Pygame."""
        pygame.display.quit()
        pygame.quit()
        logging.info("Visualizer closed.")


def create_sink(vis_params: Dict[str, Any]):
    """Builds the sink for the root rank from the `visualization` config section."""
    if vis_params.get('headless', False):
        return HeadlessSink(vis_params)
    return Visualizer(vis_params)
