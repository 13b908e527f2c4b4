"""
User roles enumeration.

Defines the role types for the school transport system.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: System-level access (maintenance operations)
        MANAGER: School transport dispatcher
        DRIVER: Drives one registered vehicle (default role)
        STUDENT: Passenger; marks their own presence at a stop
        PARENT: Follows their children's bus
    """
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    DRIVER = "DRIVER"
    STUDENT = "STUDENT"
    PARENT = "PARENT"
