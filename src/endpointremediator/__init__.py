"""
EndpointRemediator - Idempotent remediation runner for Windows endpoints
"""

__version__ = "0.1.0"

from .core import EndpointRemediator
from .errors import RemediationError

__all__ = ["EndpointRemediator", "RemediationError"]
