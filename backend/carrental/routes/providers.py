# Overview: Flask API routes for car provider operations; parses input and returns JSON responses.

"""
Car Provider Routes

- register / login / logout / me for provider accounts
- public list and detail
- admin create / update / delete
"""

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth, require_admin, require_provider
from ..errors import DomainError
from ..responses import error_response, internal_error, json_body
from ..services import auth_service
from ..services import provider_service
from ..services import session_service


providers_bp = Blueprint("providers", __name__, url_prefix="/api/v1/car-provider")


def _provider_fields(data: dict) -> dict:
    return {k: data[k] for k in ("name", "address", "telephone_number", "email") if k in data}


@providers_bp.post("/register")
def register_provider_route():
    data = json_body()
    try:
        provider = provider_service.create_provider(_provider_fields(data), data.get("password"))
        session, token = session_service.issue_session(provider)
        current_app.logger.info("Provider %s registered", provider.id)
        return jsonify({
            "provider": provider.to_dict(),
            "token": token,
            "session": session.to_dict(),
        }), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("register provider")


@providers_bp.post("/login")
def login_provider_route():
    data = json_body()
    email = data.get("email")
    password = data.get("password")

    if not email or not password:
        return jsonify({"error": "Please provide an email and password", "kind": "invalid_input"}), 400

    try:
        provider = auth_service.authenticate_provider(email, password)
        if not provider:
            return jsonify({"error": "Invalid credentials", "kind": "unauthenticated"}), 401

        session, token = session_service.issue_session(provider)
        return jsonify({
            "provider": provider.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful",
        }), 200
    except Exception:
        return internal_error("login provider")


@providers_bp.post("/logout")
@require_auth
@require_provider
def logout_provider_route():
    try:
        session_service.revoke_session(g.token, reason="Provider logout")
        return jsonify({"message": "Logout successful"}), 200
    except Exception:
        return internal_error("logout provider")


@providers_bp.get("/me")
@require_auth
@require_provider
def me_provider_route():
    return jsonify({"provider": g.principal.to_dict()}), 200


@providers_bp.get("")
def list_providers_route():
    providers = provider_service.list_providers()
    return jsonify({
        "count": len(providers),
        "providers": [p.to_dict() for p in providers],
    }), 200


@providers_bp.get("/<int:provider_id>")
def get_provider_route(provider_id: int):
    try:
        provider = provider_service.get_provider(provider_id)
        return jsonify({"provider": provider.to_dict()}), 200
    except DomainError as e:
        return error_response(e)


@providers_bp.post("")
@require_auth
@require_admin
def create_provider_route():
    data = json_body()
    try:
        provider = provider_service.create_provider(_provider_fields(data), data.get("password"))
        current_app.logger.info("Provider %s created by admin %s", provider.id, g.actor.id)
        return jsonify({"provider": provider.to_dict()}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("create provider")


@providers_bp.put("/<int:provider_id>")
@require_auth
@require_admin
def update_provider_route(provider_id: int):
    try:
        provider = provider_service.update_provider(g.actor, provider_id, json_body())
        return jsonify({"provider": provider.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("update provider")


@providers_bp.delete("/<int:provider_id>")
@require_auth
@require_admin
def delete_provider_route(provider_id: int):
    try:
        removed = provider_service.delete_provider(g.actor, provider_id)
        current_app.logger.info(
            "Provider %s deleted with %s cars by admin %s", provider_id, removed, g.actor.id
        )
        return jsonify({"cars_deleted": removed}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("delete provider")
