# Overview: Flask API routes for rent operations; parses input and returns JSON responses.

"""
Rent Routes

SECURITY: All routes require authentication.
- Users book, view, update, complete and cancel their own rents
- Admins can do all of that for any rent, and confirm pending rents
- Providers can view rents of the cars they own, never book

Nested routes under /cars/<id>/rents live in cars.py and reuse the
handlers below.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_admin
from ..errors import DomainError
from ..responses import error_response, internal_error, json_body
from ..services import rent_service


rents_bp = Blueprint("rents", __name__, url_prefix="/api/v1/rents")


def list_rents_response(car_id=None):
    try:
        rents = rent_service.list_rents(g.actor, car_id=car_id)
        return jsonify({
            "count": len(rents),
            "rents": [r.to_dict() for r in rents],
        }), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("list rents")


def create_rent_response(car_id=None):
    """
    Request body:
    {
        "car_id": 1,                      // required unless nested under /cars/<id>
        "start_date": "2024-01-01",       // ISO-8601 date or datetime
        "return_date": "2024-01-04",
        "user_id": 7,                     // admin only; defaults to the caller
        "notes": "..."                    // optional
    }
    """
    data = json_body()
    if car_id is None:
        car_id = data.get("car_id", data.get("car"))

    try:
        rent, total_price = rent_service.create_rent(
            g.actor,
            car_id=car_id,
            start_date=data.get("start_date"),
            return_date=data.get("return_date"),
            user_id=data.get("user_id", data.get("user")),
            notes=data.get("notes"),
        )
        current_app.logger.info(
            "Rent %s created for user %s on car %s by %s %s",
            rent.id, rent.user_id, rent.car_id, g.actor.role, g.actor.id,
        )
        return jsonify({"rent": rent.to_dict(), "total_price": total_price}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("create rent")


@rents_bp.get("")
@require_auth
def list_rents_route():
    """
    Query parameters:
    - car_id: only rents of this car (admins and providers)

    Returns:
        {count: int, rents: Rent[]}
    """
    return list_rents_response(car_id=request.args.get("car_id"))


@rents_bp.post("")
@require_auth
def create_rent_route():
    return create_rent_response()


@rents_bp.get("/<int:rent_id>")
@require_auth
def get_rent_route(rent_id: int):
    try:
        rent = rent_service.get_rent(g.actor, rent_id)
        return jsonify({"rent": rent.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("get rent")


@rents_bp.put("/<int:rent_id>")
@require_auth
def update_rent_route(rent_id: int):
    """Only notes and additional_charges are writable."""
    try:
        rent = rent_service.update_rent(g.actor, rent_id, json_body())
        return jsonify({"rent": rent.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("update rent")


@rents_bp.delete("/<int:rent_id>")
@require_auth
def delete_rent_route(rent_id: int):
    """Cancels a pending rent."""
    try:
        rent = rent_service.delete_rent(g.actor, rent_id)
        current_app.logger.info("Rent %s cancelled by %s %s", rent.id, g.actor.role, g.actor.id)
        return jsonify({}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("delete rent")


@rents_bp.put("/<int:rent_id>/complete")
@require_auth
def complete_rent_route(rent_id: int):
    """
    Return the car.

    Returns:
        {late_by, late_fee, car_tier, total_price, rent}
    """
    try:
        result = rent_service.complete_rent(g.actor, rent_id, json_body())
        current_app.logger.info(
            "Rent %s completed (late by %s days, late fee %s)",
            result.rent.id, result.days_late, result.late_fee,
        )
        return jsonify({
            "late_by": result.days_late,
            "late_fee": result.late_fee,
            "car_tier": result.car_tier,
            "total_price": result.total_price,
            "rent": result.rent.to_dict(),
        }), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("complete rent")


@rents_bp.put("/<int:rent_id>/confirm")
@require_auth
@require_admin
def confirm_rent_route(rent_id: int):
    try:
        rent = rent_service.confirm_rent(g.actor, rent_id)
        current_app.logger.info("Rent %s confirmed by admin %s", rent.id, g.actor.id)
        return jsonify({"rent": rent.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("confirm rent")
