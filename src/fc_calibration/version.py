"""
FC Calibration Engine Version

v0.3.0 Changes:
- Tagged-union calibration states with a pure transition function
- Configurable firmware phrase table for status-text interpretation
- Link-loss handling moves sessions to TIMED_OUT (never COMPLETED)
- MAVLink bridge on top of pymavlink
"""

__version__ = "0.3.0"
__author__ = "FC Calibration Engine Developers"
__status__ = "Beta"
