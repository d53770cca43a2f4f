# portal_database.py

import uuid

from extensions import db
from utils.datetime_utils import utc_now, ensure_utc
from services.enums import (
    EngagementStatus,
    RecurrencePattern,
    CalendarEventType,
    RecurrenceRequestStatus,
    NoteKind,
    OutboxStatus,
    UserRole,
)


def _enum_column(enum_cls, **kwargs):
    """String-backed enum column that rejects values outside the enum"""
    return db.Column(
        db.Enum(
            enum_cls,
            native_enum=False,
            validate_strings=True,
            length=32,
            values_callable=lambda members: [member.value for member in members],
        ),
        **kwargs
    )


def _new_engagement_id() -> str:
    return str(uuid.uuid4())


def _iso(value):
    return ensure_utc(value).isoformat() if value else None


# --- User Model (identity only; credentials live with the auth service) ---
class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(120), nullable=False)
    role = _enum_column(UserRole, nullable=False, default=UserRole.CUSTOMER)
    billing_customer_ref = db.Column(db.String(100), unique=True, nullable=True)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)

    # Flask-Login required properties
    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN

    def get_id(self):
        return str(self.id)

    def __repr__(self):
        return f'<User {self.email}>'


# --- Engagement: quote, job and invoice are one record at different stages ---
class Engagement(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=_new_engagement_id)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = _enum_column(EngagementStatus, nullable=False, default=EngagementStatus.DRAFT, index=True)
    recurrence_pattern = _enum_column(RecurrencePattern, nullable=False, default=RecurrencePattern.NONE)
    recurrence_rule = db.Column(db.String(100), nullable=True)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    due = db.Column(db.DateTime(timezone=True), nullable=True)

    # Billing provider references; the invoice ref drives the engagement once set
    external_quote_ref = db.Column(db.String(100), nullable=True, unique=True)
    external_invoice_ref = db.Column(db.String(100), nullable=True, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    owner = db.relationship('User', backref=db.backref('engagements', lazy=True))
    line_items = db.relationship(
        'LineItem', backref='engagement', lazy=True,
        cascade="all, delete-orphan", order_by='LineItem.position'
    )
    calendar_events = db.relationship('CalendarEvent', backref='engagement', lazy=True)
    notes = db.relationship('EngagementNote', backref='engagement', lazy=True, cascade="all, delete-orphan")

    def to_dict(self, include_line_items: bool = True):
        data = {
            'id': self.id,
            'owner_id': self.owner_id,
            'title': self.title,
            'description': self.description,
            'status': self.status.value,
            'recurrence_pattern': self.recurrence_pattern.value,
            'recurrence_rule': self.recurrence_rule,
            'total_amount_cents': self.total_amount_cents,
            'due': _iso(self.due),
            'external_quote_ref': self.external_quote_ref,
            'external_invoice_ref': self.external_invoice_ref,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
        if include_line_items:
            data['line_items'] = [item.to_dict() for item in self.line_items]
        return data

    def __repr__(self):
        return f'<Engagement {self.id} {self.status.value}>'


class LineItem(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    engagement_id = db.Column(db.String(36), db.ForeignKey('engagement.id', ondelete='CASCADE'),
                              nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    description = db.Column(db.Text, nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_amount_cents = db.Column(db.Integer, nullable=False)

    __table_args__ = (
        db.CheckConstraint('quantity >= 1', name='ck_line_item_quantity_positive'),
        db.CheckConstraint('unit_amount_cents >= 0', name='ck_line_item_amount_non_negative'),
    )

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_amount_cents

    def to_dict(self):
        return {
            'id': self.id,
            'description': self.description,
            'quantity': self.quantity,
            'unit_amount_cents': self.unit_amount_cents,
            'line_total_cents': self.line_total_cents,
        }


class CalendarEvent(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    start = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    end = db.Column(db.DateTime(timezone=True), nullable=False)
    type = _enum_column(CalendarEventType, nullable=False)
    engagement_id = db.Column(db.String(36), db.ForeignKey('engagement.id'), nullable=True, index=True)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        db.CheckConstraint('"end" > start', name='ck_calendar_event_window'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'start': _iso(self.start),
            'end': _iso(self.end),
            'type': self.type.value,
            'engagement_id': self.engagement_id,
            'owner_id': self.owner_id,
        }


class RecurrenceRequest(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    engagement_id = db.Column(db.String(36), db.ForeignKey('engagement.id'), nullable=False, index=True)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    frequency_days = db.Column(db.Integer, nullable=False)
    requested_weekday = db.Column(db.Integer, nullable=True)  # 0 = Sunday, None = any day
    status = _enum_column(RecurrenceRequestStatus, nullable=False, default=RecurrenceRequestStatus.PENDING)
    counter_frequency_days = db.Column(db.Integer, nullable=True)
    counter_weekday = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    engagement = db.relationship('Engagement', backref=db.backref('recurrence_requests', lazy=True))

    __table_args__ = (
        db.CheckConstraint('frequency_days >= 1', name='ck_recurrence_frequency_positive'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'engagement_id': self.engagement_id,
            'owner_id': self.owner_id,
            'frequency_days': self.frequency_days,
            'requested_weekday': self.requested_weekday,
            'status': self.status.value,
            'counter_frequency_days': self.counter_frequency_days,
            'counter_weekday': self.counter_weekday,
            'created_at': _iso(self.created_at),
        }


# --- Audit trail ---
class EngagementNote(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    engagement_id = db.Column(db.String(36), db.ForeignKey('engagement.id'), nullable=False, index=True)
    author_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    kind = _enum_column(NoteKind, nullable=False)
    body = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)

    def to_dict(self):
        return {
            'id': self.id,
            'engagement_id': self.engagement_id,
            'author_id': self.author_id,
            'kind': self.kind.value,
            'body': self.body,
            'created_at': _iso(self.created_at),
        }


class Setting(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False)
    value = db.Column(db.Text, nullable=False)


# --- Billing provider webhook log (for reliability and replay) ---
class BillingWebhookEvent(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(100), unique=True, nullable=True)
    event_type = db.Column(db.String(50), nullable=False)
    payload = db.Column(db.JSON)
    processed = db.Column(db.Boolean, default=False)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)


# --- Notification outbox, filled after a transition commits ---
class NotificationOutbox(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(50), nullable=False)
    recipient_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    data = db.Column(db.JSON, nullable=False, default=dict)
    channels = db.Column(db.JSON, nullable=False, default=list)
    status = _enum_column(OutboxStatus, nullable=False, default=OutboxStatus.PENDING, index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)
    # Time of the latest delivery claim
    claimed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_message(self):
        """Wire format consumed by the delivery service"""
        return {
            'type': self.type,
            'userId': self.recipient_id,
            'data': self.data or {},
            'channels': list(self.channels or []),
        }
