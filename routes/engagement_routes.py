from flask import Blueprint, request, jsonify, current_app

from auth_utils import login_required, admin_required, get_current_user
from routes.common import json_body, owner_scope, parse_int
from services.common.errors import ValidationError

engagement_bp = Blueprint('engagements', __name__)


def _engagement_service():
    return current_app.services.get('engagement')


@engagement_bp.route('', methods=['POST'])
@login_required
def create_engagement():
    """
    Create an engagement with its line items and optional job slot.
    Customers create for themselves; admins may name any owner and send at once.
    """
    data = json_body()
    user = get_current_user()

    if user.is_admin:
        owner_id = parse_int(data.get('owner_id', user.id), 'owner_id')
    else:
        owner_id = user.id
        if data.get('send'):
            return jsonify({'error': 'Only admins can send quotes', 'code': 'FORBIDDEN'}), 403
        if data.get('due') is not None:
            return jsonify({'error': 'Only admins can set the due date', 'code': 'FORBIDDEN'}), 403

    result = _engagement_service().create_engagement(
        owner_id=owner_id,
        title=data.get('title'),
        description=data.get('description'),
        line_items=data.get('line_items', []),
        start=data.get('start'),
        end=data.get('end'),
        due=data.get('due'),
        recurrence_pattern=data.get('recurrence_pattern'),
        send=bool(data.get('send', False)),
        actor_id=user.id,
    )
    return jsonify(result.to_dict()), 201


@engagement_bp.route('', methods=['GET'])
@login_required
def list_engagements():
    scope = owner_scope()
    if scope is None and request.args.get('owner_id'):
        scope = parse_int(request.args.get('owner_id'), 'owner_id')

    statuses = [s for s in request.args.get('status', '').split(',') if s]
    page = parse_int(request.args.get('page', '1'), 'page')
    per_page = parse_int(request.args.get('per_page', '20'), 'per_page')

    result = _engagement_service().list_engagements(owner_id=scope, statuses=statuses,
                                                    page=page, per_page=per_page)
    return jsonify({
        'engagements': [e.to_dict(include_line_items=False) for e in result.items],
        'total': result.total,
        'page': result.page,
        'per_page': result.per_page,
        'pages': result.pages,
        'has_next': result.has_next,
    })


@engagement_bp.route('/<engagement_id>', methods=['GET'])
@login_required
def get_engagement(engagement_id):
    engagement = _engagement_service().get_engagement(engagement_id, owner_scope())
    return jsonify(engagement.to_dict())


@engagement_bp.route('/<engagement_id>/notes', methods=['GET'])
@login_required
def get_notes(engagement_id):
    notes = _engagement_service().get_notes(engagement_id, owner_scope())
    return jsonify({'notes': [note.to_dict() for note in notes]})


@engagement_bp.route('/<engagement_id>', methods=['PATCH'])
@login_required
def update_engagement(engagement_id):
    engagement = _engagement_service().update_details(engagement_id, json_body(), owner_scope())
    return jsonify(engagement.to_dict())


@engagement_bp.route('/<engagement_id>/line-items', methods=['PUT'])
@login_required
def replace_line_items(engagement_id):
    data = json_body()
    if 'line_items' not in data:
        raise ValidationError("line_items is required", details={'field': 'line_items'})
    engagement = _engagement_service().replace_line_items(engagement_id, data['line_items'], owner_scope())
    return jsonify(engagement.to_dict())


@engagement_bp.route('/<engagement_id>/schedule', methods=['POST'])
@login_required
def schedule_engagement(engagement_id):
    data = json_body()
    result = _engagement_service().schedule_engagement(
        engagement_id, data.get('start'), data.get('end'), owner_scope()
    )
    return jsonify(result.to_dict())


# --- Lifecycle actions ---

@engagement_bp.route('/<engagement_id>/send', methods=['POST'])
@admin_required
def send_engagement(engagement_id):
    engagement = _engagement_service().send(engagement_id, actor_id=get_current_user().id)
    return jsonify(engagement.to_dict())


@engagement_bp.route('/<engagement_id>/accept', methods=['POST'])
@login_required
def accept_engagement(engagement_id):
    engagement = _engagement_service().accept(engagement_id, owner_scope(), actor_id=get_current_user().id)
    return jsonify(engagement.to_dict())


@engagement_bp.route('/<engagement_id>/decline', methods=['POST'])
@login_required
def decline_engagement(engagement_id):
    engagement = _engagement_service().decline(engagement_id, owner_scope(), actor_id=get_current_user().id)
    return jsonify(engagement.to_dict())


@engagement_bp.route('/<engagement_id>/revision', methods=['POST'])
@login_required
def request_revision(engagement_id):
    data = json_body()
    engagement = _engagement_service().request_revision(
        engagement_id, data.get('reason'), owner_scope(), actor_id=get_current_user().id
    )
    return jsonify(engagement.to_dict())


@engagement_bp.route('/<engagement_id>/revise', methods=['POST'])
@admin_required
def revise_engagement(engagement_id):
    engagement = _engagement_service().revise(engagement_id, actor_id=get_current_user().id)
    return jsonify(engagement.to_dict())


@engagement_bp.route('/<engagement_id>/cancel', methods=['POST'])
@login_required
def cancel_engagement(engagement_id):
    data = json_body()
    engagement = _engagement_service().cancel(
        engagement_id, owner_scope(), actor_id=get_current_user().id, reason=data.get('reason')
    )
    return jsonify(engagement.to_dict())


@engagement_bp.route('/<engagement_id>/invoice', methods=['POST'])
@admin_required
def invoice_engagement(engagement_id):
    data = json_body()
    engagement = _engagement_service().mark_invoice_created(
        engagement_id, data.get('external_invoice_ref'), actor_id=get_current_user().id
    )
    return jsonify(engagement.to_dict())


@engagement_bp.route('/<engagement_id>/mark-paid', methods=['POST'])
@admin_required
def mark_paid(engagement_id):
    engagement = _engagement_service().mark_paid(engagement_id, actor_id=get_current_user().id)
    return jsonify(engagement.to_dict())


@engagement_bp.route('/<engagement_id>/overdue', methods=['POST'])
@admin_required
def mark_overdue(engagement_id):
    engagement = _engagement_service().mark_overdue(engagement_id, actor_id=get_current_user().id)
    return jsonify(engagement.to_dict())


@engagement_bp.route('/<engagement_id>/payment-intent', methods=['POST'])
@login_required
def create_payment_intent(engagement_id):
    intent = _engagement_service().create_payment_intent(engagement_id, owner_scope())
    return jsonify({'payment_intent': intent}), 201
