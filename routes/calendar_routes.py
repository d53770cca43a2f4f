from flask import Blueprint, Response, jsonify, current_app

from auth_utils import login_required, admin_required, get_current_user
from routes.common import json_body

calendar_bp = Blueprint('calendar', __name__)

ICAL_MIMETYPE = 'text/calendar; charset=utf-8'


def _calendar_service():
    return current_app.services.get('calendar')


@calendar_bp.route('/calendar/feed.ics')
@login_required
def owner_feed():
    """iCalendar feed of the caller's events plus blocked days"""
    user = get_current_user()
    body = _calendar_service().export_feed(user.id, calendar_name=f"Appointments for {user.name}")
    return Response(body, content_type=ICAL_MIMETYPE)


@calendar_bp.route('/admin/calendar/feed.ics')
@admin_required
def global_feed():
    body = _calendar_service().export_feed(None, calendar_name="All appointments")
    return Response(body, content_type=ICAL_MIMETYPE)


@calendar_bp.route('/admin/calendar/blocked-days', methods=['GET'])
@admin_required
def list_blocked_days():
    events = _calendar_service().list_blocked_days()
    return jsonify({'blocked_days': [event.to_dict() for event in events]})


@calendar_bp.route('/admin/calendar/blocked-days', methods=['POST'])
@admin_required
def block_day():
    data = json_body()
    event = _calendar_service().block_day(data.get('day'), data.get('title'), actor_id=get_current_user().id)
    return jsonify(event.to_dict()), 201


@calendar_bp.route('/admin/calendar/blocked-days/<int:event_id>', methods=['DELETE'])
@admin_required
def unblock_day(event_id):
    _calendar_service().unblock_day(event_id, actor_id=get_current_user().id)
    return '', 204


@calendar_bp.route('/calendar/personal-events', methods=['POST'])
@login_required
def add_personal_event():
    data = json_body()
    event = _calendar_service().add_personal_event(
        get_current_user().id, data.get('title'), data.get('start'), data.get('end')
    )
    return jsonify(event.to_dict()), 201
