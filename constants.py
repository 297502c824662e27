# constants.py
"""
Application-level constants.

These values are the reference settings of the model and the default
rendering properties. They are used whenever `config.json` leaves a key
out, so a run with an empty configuration reproduces the reference
trajectory.
"""
import math

# --- Model reference values ---
PARTICLE_COUNT = 1000
SPEED = 0.25
INTERACTION_RADIUS = 0.25
PHASE_LAG = 1.53
COUPLING = 1.0
DELTA_TIME = 0.1

# Headings are seeded uniformly in [0, TWO_PI).
TWO_PI = 2.0 * math.pi

# Number of float32 values per particle record (x, y, phi).
PARTICLE_WIDTH = 3

# Rank that seeds the field and owns the window.
ROOT_RANK = 0

# --- Visualization settings ---
SCREEN_WIDTH = 600
SCREEN_HEIGHT = 480
LINE_LENGTH = 5
# 0 means uncapped: the loop steps as fast as it can.
FPS = 0
WINDOW_TITLE = "Vicsek"
BACKGROUND_COLOR = (0, 0, 0)
LINE_COLOR = (255, 255, 255)

# --- Run control ---
MAX_STEPS = 0  # 0 runs until the window is closed
LOG_THROTTLE_STEPS = 100
TRANSPORT = "loopback"

# --- Process exit codes ---
EXIT_OK = 0
EXIT_RUNTIME_ERROR = 1
EXIT_CONFIG_ERROR = 2
