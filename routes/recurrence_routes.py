from flask import Blueprint, jsonify, current_app

from auth_utils import login_required, admin_required, get_current_user
from routes.common import json_body, owner_scope, parse_int

recurrence_bp = Blueprint('recurrence', __name__)


def _recurrence_service():
    return current_app.services.get('recurrence')


def _optional_int(value, field):
    return None if value is None else parse_int(value, field)


@recurrence_bp.route('/engagements/<engagement_id>/recurrence', methods=['POST'])
@login_required
def submit_recurrence_request(engagement_id):
    data = json_body()
    request_row = _recurrence_service().submit_request(
        engagement_id,
        get_current_user().id,
        data.get('frequency_days'),
        data.get('requested_weekday'),
    )
    return jsonify(request_row.to_dict()), 201


@recurrence_bp.route('/engagements/<engagement_id>/recurrence', methods=['GET'])
@login_required
def list_recurrence_requests(engagement_id):
    requests = _recurrence_service().list_requests_for_engagement(engagement_id, owner_scope())
    return jsonify({'requests': [r.to_dict() for r in requests]})


@recurrence_bp.route('/recurrence/unavailable-weekdays')
@login_required
def unavailable_weekdays():
    return jsonify({'unavailable_weekdays': _recurrence_service().get_unavailable_weekdays()})


@recurrence_bp.route('/admin/recurrence-requests')
@admin_required
def pending_requests():
    requests = _recurrence_service().list_pending_requests()
    return jsonify({'requests': [r.to_dict() for r in requests]})


@recurrence_bp.route('/admin/recurrence-requests/<int:request_id>/accept', methods=['POST'])
@admin_required
def accept_request(request_id):
    request_row = _recurrence_service().accept_request(request_id, actor_id=get_current_user().id)
    return jsonify(request_row.to_dict())


@recurrence_bp.route('/admin/recurrence-requests/<int:request_id>/decline', methods=['POST'])
@admin_required
def decline_request(request_id):
    request_row = _recurrence_service().decline_request(request_id, actor_id=get_current_user().id)
    return jsonify(request_row.to_dict())


@recurrence_bp.route('/admin/recurrence-requests/<int:request_id>/counter', methods=['POST'])
@admin_required
def counter_request(request_id):
    data = json_body()
    request_row = _recurrence_service().counter_request(
        request_id,
        data.get('frequency_days'),
        _optional_int(data.get('weekday'), 'weekday'),
        actor_id=get_current_user().id,
    )
    return jsonify(request_row.to_dict())


@recurrence_bp.route('/admin/settings/blocked-weekdays', methods=['PUT'])
@admin_required
def set_blocked_weekdays():
    data = json_body()
    setting_service = current_app.services.get('setting')
    with current_app.services.get('store').transaction():
        weekdays = setting_service.set_blocked_recurrence_weekdays(data.get('weekdays') or [])
    return jsonify({'blocked_weekdays': weekdays})
