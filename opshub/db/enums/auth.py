"""Auth-related enums."""

from enum import Enum


class Role(str, Enum):
    """
    User roles.

    - SUPERADMIN / ADMIN: agency staff who receive operational notifications
    - TEAM: agency staff without admin rights
    - CLIENT: service-business client with a ClientProfile
    """

    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    TEAM = "team"
    CLIENT = "client"


ADMIN_ROLES = (Role.SUPERADMIN, Role.ADMIN)
