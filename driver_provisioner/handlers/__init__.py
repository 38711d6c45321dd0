"""
Authentication and request handlers for the Driver Provisioner.
"""

from .auth import verify_internal_token

__all__ = ["verify_internal_token"]
