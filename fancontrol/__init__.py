"""
Fan Control Package.

Monitor and drive cooling fans on Linux (hwmon) and Windows (Lenovo Legion
firmware via WMI, or the read-only Win32_Fan class) through one controller
interface, a safety-checked fan curve model and a single-writer worker loop.
"""

__version__ = "0.3.0"

# Core components
from .config import ConfigManager
from .errors import FanControlError, InvalidCurve
from .fan import ControllerSnapshot, Fan, FanCurve, FanCurvePoint, HeldOverrides
from .validator import validate_curve

# Commands
from .commands import SetCurveCommand, SetDutyCommand, SetFullSpeedCommand

# Re-export key components for easier importing by external modules/scripts if any.
# For internal use, direct imports like `from .config import ConfigManager` are preferred.
__all__ = [
    "ConfigManager",
    "FanControlError", "InvalidCurve",
    "ControllerSnapshot", "Fan", "FanCurve", "FanCurvePoint", "HeldOverrides",
    "validate_curve",
    "SetCurveCommand", "SetDutyCommand", "SetFullSpeedCommand",
    "__version__",
]
