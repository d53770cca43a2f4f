from flask import Blueprint, jsonify, current_app

from auth_utils import login_required, admin_required, get_current_user

availability_bp = Blueprint('availability', __name__)


@availability_bp.route('/availability')
@login_required
def owner_availability():
    """Booked, pending and blocked days visible to the caller"""
    availability = current_app.services.get('availability').get_availability(get_current_user().id)
    return jsonify(availability)


@availability_bp.route('/admin/availability')
@admin_required
def global_availability():
    availability = current_app.services.get('availability').get_availability(None)
    return jsonify(availability)
