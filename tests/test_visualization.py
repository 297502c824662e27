from __future__ import annotations

import math

import numpy as np
import pygame
import pytest

from utils import ConfigurationError
from visualization import HeadlessSink, Visualizer, create_sink, segment_endpoints


def test_segment_endpoints_follow_heading() -> None:
    snapshot = np.array(
        [[0.5, 0.5, 0.0], [0.25, 0.75, math.pi / 2], [0.0, 0.0, math.pi]],
        dtype=np.float32,
    )

    segments = segment_endpoints(snapshot, 600, 480, 5)

    assert segments.shape == (3, 4)
    np.testing.assert_allclose(segments[0], [300.0, 240.0, 305.0, 240.0], atol=1e-4)
    np.testing.assert_allclose(segments[1], [150.0, 360.0, 150.0, 365.0], atol=1e-4)
    # Off-screen end points are left for the sink to clip.
    np.testing.assert_allclose(segments[2], [0.0, 0.0, -5.0, 0.0], atol=1e-4)


def test_segment_endpoints_empty_field() -> None:
    segments = segment_endpoints(np.zeros((0, 3), dtype=np.float32), 600, 480, 5)
    assert segments.shape == (0, 4)


def test_headless_sink_counts_frames() -> None:
    sink = create_sink({"headless": True})
    assert isinstance(sink, HeadlessSink)
    assert sink.poll_quit() is False
    sink.draw(np.zeros((4, 3), dtype=np.float32))
    sink.draw(np.zeros((4, 3), dtype=np.float32))
    assert sink.frames == 2
    sink.close()


@pytest.fixture
def visualizer():
    vis = Visualizer({"width": 64, "height": 48, "line_length": 3})
    yield vis
    vis.close()


def test_visualizer_draws_segments(visualizer: Visualizer) -> None:
    snapshot = np.array([[0.5, 0.5, 0.0]], dtype=np.float32)

    visualizer.draw(snapshot)

    # The segment starts at (32, 24) and runs 3 pixels to the right.
    assert tuple(visualizer.screen.get_at((33, 24)))[:3] == (255, 255, 255)
    assert tuple(visualizer.screen.get_at((10, 10)))[:3] == (0, 0, 0)


def test_visualizer_reports_quit_event(visualizer: Visualizer) -> None:
    assert visualizer.poll_quit() is False
    pygame.event.post(pygame.event.Event(pygame.QUIT))
    assert visualizer.poll_quit() is True


def test_visualizer_reports_escape(visualizer: Visualizer) -> None:
    pygame.event.post(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_ESCAPE))
    assert visualizer.poll_quit() is True


def test_visualizer_rejects_bad_settings() -> None:
    with pytest.raises(ConfigurationError):
        Visualizer({"width": 0, "height": 48})
    with pytest.raises(ConfigurationError):
        Visualizer({"line_color": "not-a-color"})


def test_headless_sink_ignores_window_settings() -> None:
    sink = HeadlessSink({"width": 10, "height": 10, "line_length": 2})
    assert HeadlessSink().frames == 0
    assert sink.poll_quit() is False
