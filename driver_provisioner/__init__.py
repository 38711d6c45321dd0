"""
Driver Provisioner

Idempotent provisioning and deprovisioning of driver identities (Supabase
Auth) and driver profiles (drivers table).
"""

__version__ = "1.0.0"
