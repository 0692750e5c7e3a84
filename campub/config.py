"""
Configuration management for campub.

All settings can be overridden via environment variables:
  CAMPUB_DEVICE            - Capture device path or index (default: /dev/video0)
  CAMPUB_TOPIC             - Topic frames are published on (default: image)
  CAMPUB_FLIP_TOPIC        - Topic flip toggles arrive on (default: flip_image)
  CAMPUB_WIDTH             - Frame width in pixels (default: 640)
  CAMPUB_HEIGHT            - Frame height in pixels (default: 480)
  CAMPUB_FREQ              - Publish frequency in Hz (default: 30.0)
  CAMPUB_HISTORY           - keep_last or keep_all (default: keep_last)
  CAMPUB_DEPTH             - Queue depth for keep_last (default: 10)
  CAMPUB_RELIABILITY       - reliable or best_effort (default: reliable)
  CAMPUB_ENDPOINT          - ZeroMQ endpoint for frames (default: tcp://*:5555)
  CAMPUB_CONTROL_ENDPOINT  - ZeroMQ endpoint for toggles (default: tcp://*:5556)
  CAMPUB_HTTP_PORT         - HTTP control/health port, 0 disables (default: 0)
  CAMPUB_SEND_TIMEOUT_MS   - Reliable send timeout in ms (default: 1000)
  CAMPUB_SHOW              - Show a preview window (default: false)
  CAMPUB_SYNTHETIC         - Use the test pattern instead of a camera (default: false)
"""

import os


def _env_str(name: str, default: str) -> str:
    """Get a string from environment variable with fallback."""
    return os.environ.get(name, default)


def _env_int(name: str, default: int) -> int:
    """Get an integer from environment variable with fallback."""
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        print(f"[config] Warning: {name}={val} is not a valid integer, using default={default}")
        return default


def _env_float(name: str, default: float) -> float:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        print(f"[config] Warning: {name}={val} is not a valid number, using default={default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    val = os.environ.get(name)
    if val is None:
        return default
    lowered = val.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    print(f"[config] Warning: {name}={val} is not a valid boolean, using default={default}")
    return default


# Source settings
DEVICE = _env_str("CAMPUB_DEVICE", "/dev/video0")
WIDTH = _env_int("CAMPUB_WIDTH", 640)
HEIGHT = _env_int("CAMPUB_HEIGHT", 480)
SYNTHETIC = _env_bool("CAMPUB_SYNTHETIC", False)

# Loop settings
FREQUENCY = _env_float("CAMPUB_FREQ", 30.0)
SHOW_CAMERA = _env_bool("CAMPUB_SHOW", False)

# Channels
TOPIC = _env_str("CAMPUB_TOPIC", "image")
FLIP_TOPIC = _env_str("CAMPUB_FLIP_TOPIC", "flip_image")
ENDPOINT = _env_str("CAMPUB_ENDPOINT", "tcp://*:5555")
CONTROL_ENDPOINT = _env_str("CAMPUB_CONTROL_ENDPOINT", "tcp://*:5556")
HTTP_HOST = _env_str("CAMPUB_HTTP_HOST", "0.0.0.0")
HTTP_PORT = _env_int("CAMPUB_HTTP_PORT", 0)

# QoS
HISTORY = _env_str("CAMPUB_HISTORY", "keep_last")
DEPTH = _env_int("CAMPUB_DEPTH", 10)
RELIABILITY = _env_str("CAMPUB_RELIABILITY", "reliable")
SEND_TIMEOUT_MS = _env_int("CAMPUB_SEND_TIMEOUT_MS", 1000)

# Statistics
STATS_WINDOW = _env_int("CAMPUB_STATS_WINDOW", 90)


def print_config():
    """Print current configuration to stdout."""
    print("[config] Current settings:")
    print(f"  DEVICE           = {DEVICE}")
    print(f"  WIDTH            = {WIDTH}")
    print(f"  HEIGHT           = {HEIGHT}")
    print(f"  FREQUENCY        = {FREQUENCY}")
    print(f"  TOPIC            = {TOPIC}")
    print(f"  ENDPOINT         = {ENDPOINT}")
    print(f"  CONTROL_ENDPOINT = {CONTROL_ENDPOINT}")
    print(f"  QOS              = {HISTORY}({DEPTH}), {RELIABILITY}")
    print(f"  HTTP_PORT        = {HTTP_PORT or 'disabled'}")
