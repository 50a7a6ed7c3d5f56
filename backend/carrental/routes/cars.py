# Overview: Flask API routes for car operations; parses input and returns JSON responses.

"""
Car Routes

- GET list/detail are public
- Create/update/delete require an admin
- /cars/<id>/rents is the nested form of the rent list/create routes
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_admin
from ..errors import DomainError
from ..responses import error_response, internal_error, json_body
from ..services import car_service
from .rents import create_rent_response, list_rents_response


cars_bp = Blueprint("cars", __name__, url_prefix="/api/v1/cars")


@cars_bp.get("")
def list_cars_route():
    """
    Query parameters:
    - provider_id: only cars of this provider

    Returns:
        {count: int, cars: Car[]}
    """
    provider_id = request.args.get("provider_id", type=int)
    try:
        cars = car_service.list_cars(provider_id=provider_id)
        return jsonify({"count": len(cars), "cars": [c.to_dict() for c in cars]}), 200
    except Exception:
        return internal_error("list cars")


@cars_bp.get("/<int:car_id>")
def get_car_route(car_id: int):
    try:
        car = car_service.get_car(car_id)
        return jsonify({"car": car.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("get car")


@cars_bp.post("")
@require_auth
@require_admin
def create_car_route():
    try:
        car = car_service.create_car(g.actor, json_body())
        current_app.logger.info("Car %s (%s) created by admin %s", car.id, car.license_plate, g.actor.id)
        return jsonify({"car": car.to_dict()}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("create car")


@cars_bp.put("/<int:car_id>")
@require_auth
@require_admin
def update_car_route(car_id: int):
    try:
        car = car_service.update_car(g.actor, car_id, json_body())
        return jsonify({"car": car.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("update car")


@cars_bp.delete("/<int:car_id>")
@require_auth
@require_admin
def delete_car_route(car_id: int):
    try:
        car_service.delete_car(g.actor, car_id)
        current_app.logger.info("Car %s deleted by admin %s", car_id, g.actor.id)
        return jsonify({}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return internal_error("delete car")


@cars_bp.get("/<int:car_id>/rents")
@require_auth
def list_car_rents_route(car_id: int):
    return list_rents_response(car_id=car_id)


@cars_bp.post("/<int:car_id>/rents")
@require_auth
def create_car_rent_route(car_id: int):
    return create_rent_response(car_id=car_id)
