# Overview: Request authentication decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .actors import AdminActor, ProviderActor, UserActor
from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def require_auth(f):
    """
    Require authentication and resolve the caller into an Actor.

    Sets the following Flask g attributes:
    - g.actor: UserActor | AdminActor | ProviderActor
    - g.principal: the authenticated User or Provider row
    - g.session_context: The full SessionContext object

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, revoked or expired token
    - The account behind the token was deleted
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required", "kind": "unauthenticated"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token", "kind": "unauthenticated"}), 401

        g.actor = context.actor
        g.principal = context.principal
        g.session_context = context
        g.token = token

        return f(*args, **kwargs)

    return decorated_function


def require_actor(*actor_types):
    """
    Restrict a route to some Actor variants. Must be stacked under @require_auth.

        @require_auth
        @require_actor(AdminActor)
        def ...
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "actor"):
                return jsonify({"error": "Authentication required", "kind": "unauthenticated"}), 401
            if not isinstance(g.actor, actor_types):
                return jsonify({
                    "error": f"User role {g.actor.role} is not authorized to access this route",
                    "kind": "forbidden",
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator


require_admin = require_actor(AdminActor)
require_account = require_actor(UserActor, AdminActor)
require_provider = require_actor(ProviderActor)
