# chainvote/authentication/rbac.py

from enum import Enum
from functools import wraps
from flask_jwt_extended import verify_jwt_in_request, get_jwt

from chainvote.errors import Forbidden

# Role-Based Access Control on top of the JWT role claim

class UserRole(Enum):
    VOTER = "Voter"
    ADMIN = "Admin"
    OBSERVER = "Observer"

class Permission(Enum):
    CAST_VOTE = "cast_vote"
    MANAGE_ELECTIONS = "manage_elections"
    MANAGE_CANDIDATES = "manage_candidates"

# Role -> Permissions mapping
ROLE_PERMISSIONS = {
    UserRole.VOTER: [
        Permission.CAST_VOTE,
    ],
    UserRole.ADMIN: [
        Permission.MANAGE_ELECTIONS,
        Permission.MANAGE_CANDIDATES,
    ],
    # Observers sign results with their own wallet; the endpoint is public
    UserRole.OBSERVER: [],
}

FORBIDDEN_MESSAGES = {
    Permission.CAST_VOTE: "Solo los votantes pueden emitir votos.",
    Permission.MANAGE_ELECTIONS: "Solo los administradores pueden gestionar elecciones.",
    Permission.MANAGE_CANDIDATES: "Solo los administradores pueden gestionar candidatos.",
}

class RBACService:
    def has_permission(self, user_role, permission):
        try:
            if isinstance(user_role, str):
                user_role = UserRole(user_role)
            if isinstance(permission, str):
                permission = Permission(permission)
        except ValueError:
            return False
        return permission in ROLE_PERMISSIONS.get(user_role, [])

# Decorator for required permission; a missing or invalid token is a 401 from
# flask_jwt_extended, a valid token with the wrong role a 403.
def require_permission(permission):
    rbac = RBACService()

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            role = get_jwt().get('role')
            if not rbac.has_permission(role, permission):
                raise Forbidden(FORBIDDEN_MESSAGES.get(permission, "Acceso denegado."))
            return func(*args, **kwargs)
        return wrapper
    return decorator
