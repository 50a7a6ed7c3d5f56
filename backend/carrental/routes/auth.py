# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes for renters and admins.

SECURITY FEATURES:
- Password strength validation on registration
- Self-registration always creates role=user
- Session management with token-based auth (server-side allow-list)
- Admin-only user directory and account deletion
"""

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth, require_admin, require_account
from ..errors import DomainError
from ..models.auth import ROLE_ADMIN, ROLE_USER
from ..responses import error_response, internal_error, json_body
from ..services import auth_service
from ..services import session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


def _account_fields(data: dict) -> dict:
    return {k: data[k] for k in ("name", "telephone_number", "email") if k in data}


@auth_bp.post("/register")
def register_route():
    """
    Register a renter account and log it in.

    Request body:
    {
        "name": "...",
        "telephone_number": "012-3456789",
        "email": "...",
        "password": "..."        // at least 6 characters
    }

    Any "role" in the body is ignored.
    """
    data = json_body()
    try:
        user = auth_service.create_user(_account_fields(data), data.get("password"), role=ROLE_USER)
        session, token = session_service.issue_session(user)
        current_app.logger.info("User %s registered", user.id)
        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
        }), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("register user")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    data = json_body()
    email = data.get("email")
    password = data.get("password")

    if not email or not password:
        return jsonify({"error": "Please provide an email and password", "kind": "invalid_input"}), 400

    try:
        user = auth_service.authenticate_user(email, password)
        if not user:
            return jsonify({"error": "Invalid credentials", "kind": "unauthenticated"}), 401

        session, token = session_service.issue_session(user)
        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful",
        }), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("login user")


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """
    Revoke session token (logout).

    WHY: Explicit logout prevents token reuse.
    """
    try:
        session_service.revoke_session(g.token, reason="User logout")
        return jsonify({"message": "Logout successful"}), 200
    except Exception:
        return internal_error("logout user")


@auth_bp.get("/me")
@require_auth
@require_account
def me_route():
    return jsonify({"user": g.principal.to_dict()}), 200


# =============================================================================
# ADMIN: USER DIRECTORY
# =============================================================================

@auth_bp.get("/users")
@require_auth
@require_admin
def list_users_route():
    users = auth_service.list_users(ROLE_USER)
    return jsonify({"count": len(users), "users": [u.to_dict() for u in users]}), 200


@auth_bp.get("/admins")
@require_auth
@require_admin
def list_admins_route():
    admins = auth_service.list_users(ROLE_ADMIN)
    return jsonify({"count": len(admins), "admins": [a.to_dict() for a in admins]}), 200


@auth_bp.post("/admins")
@require_auth
@require_admin
def create_admin_route():
    data = json_body()
    try:
        admin = auth_service.create_user(_account_fields(data), data.get("password"), role=ROLE_ADMIN)
        current_app.logger.info("Admin %s created by admin %s", admin.id, g.actor.id)
        return jsonify({"user": admin.to_dict()}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("create admin")


@auth_bp.get("/users/<int:user_id>")
@require_auth
def get_user_route(user_id: int):
    try:
        user = auth_service.get_user(g.actor, user_id)
        return jsonify({"user": user.to_dict()}), 200
    except DomainError as e:
        return error_response(e)


def _delete_account(user_id: int, role: str):
    try:
        auth_service.delete_user(g.actor, user_id, expected_role=role)
        current_app.logger.info("%s %s deleted by admin %s", role.capitalize(), user_id, g.actor.id)
        return jsonify({}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error(f"delete {role}")


@auth_bp.delete("/users/<int:user_id>")
@require_auth
@require_admin
def delete_user_route(user_id: int):
    return _delete_account(user_id, ROLE_USER)


@auth_bp.delete("/admins/<int:user_id>")
@require_auth
@require_admin
def delete_admin_route(user_id: int):
    return _delete_account(user_id, ROLE_ADMIN)
