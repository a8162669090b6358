"""
Local host-telemetry companion: stores system samples, evaluates alert
thresholds, and parses network diagnostic output.
"""

__version__ = "1.0.0"
