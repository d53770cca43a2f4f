"""Create portal tables

Revision ID: 000_initial_tables
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '000_initial_tables'
down_revision = None
branch_labels = None
depends_on = None


def _status(name, **kwargs):
    return sa.Column(name, sa.String(length=32), **kwargs)


def upgrade():
    # User table first (no foreign keys)
    op.create_table('user',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=120), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        _status('role', nullable=False),
        sa.Column('billing_customer_ref', sa.String(length=100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.UniqueConstraint('billing_customer_ref')
    )

    op.create_table('engagement',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        _status('status', nullable=False),
        _status('recurrence_pattern', nullable=False),
        sa.Column('recurrence_rule', sa.String(length=100), nullable=True),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        sa.Column('due', sa.DateTime(timezone=True), nullable=True),
        sa.Column('external_quote_ref', sa.String(length=100), nullable=True),
        sa.Column('external_invoice_ref', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['owner_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_quote_ref'),
        sa.UniqueConstraint('external_invoice_ref')
    )
    op.create_index('ix_engagement_owner_id', 'engagement', ['owner_id'])
    op.create_index('ix_engagement_status', 'engagement', ['status'])

    op.create_table('line_item',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('engagement_id', sa.String(length=36), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_amount_cents', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity >= 1', name='ck_line_item_quantity_positive'),
        sa.CheckConstraint('unit_amount_cents >= 0', name='ck_line_item_amount_non_negative'),
        sa.ForeignKeyConstraint(['engagement_id'], ['engagement.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_line_item_engagement_id', 'line_item', ['engagement_id'])

    op.create_table('calendar_event',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end', sa.DateTime(timezone=True), nullable=False),
        _status('type', nullable=False),
        sa.Column('engagement_id', sa.String(length=36), nullable=True),
        sa.Column('owner_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('"end" > start', name='ck_calendar_event_window'),
        sa.ForeignKeyConstraint(['engagement_id'], ['engagement.id']),
        sa.ForeignKeyConstraint(['owner_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_calendar_event_start', 'calendar_event', ['start'])
    op.create_index('ix_calendar_event_engagement_id', 'calendar_event', ['engagement_id'])
    op.create_index('ix_calendar_event_owner_id', 'calendar_event', ['owner_id'])

    op.create_table('recurrence_request',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('engagement_id', sa.String(length=36), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=False),
        sa.Column('frequency_days', sa.Integer(), nullable=False),
        sa.Column('requested_weekday', sa.Integer(), nullable=True),
        _status('status', nullable=False),
        sa.Column('counter_frequency_days', sa.Integer(), nullable=True),
        sa.Column('counter_weekday', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('frequency_days >= 1', name='ck_recurrence_frequency_positive'),
        sa.ForeignKeyConstraint(['engagement_id'], ['engagement.id']),
        sa.ForeignKeyConstraint(['owner_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_recurrence_request_engagement_id', 'recurrence_request', ['engagement_id'])

    op.create_table('engagement_note',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('engagement_id', sa.String(length=36), nullable=False),
        sa.Column('author_id', sa.Integer(), nullable=True),
        _status('kind', nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['engagement_id'], ['engagement.id']),
        sa.ForeignKeyConstraint(['author_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_engagement_note_engagement_id', 'engagement_note', ['engagement_id'])

    op.create_table('setting',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=100), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key')
    )

    op.create_table('billing_webhook_event',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.String(length=100), nullable=True),
        sa.Column('event_type', sa.String(length=50), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('processed', sa.Boolean(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id')
    )

    op.create_table('notification_outbox',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('recipient_id', sa.Integer(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('channels', sa.JSON(), nullable=False),
        _status('status', nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['recipient_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_notification_outbox_recipient_id', 'notification_outbox', ['recipient_id'])
    op.create_index('ix_notification_outbox_status', 'notification_outbox', ['status'])


def downgrade():
    op.drop_index('ix_notification_outbox_status', table_name='notification_outbox')
    op.drop_index('ix_notification_outbox_recipient_id', table_name='notification_outbox')
    op.drop_table('notification_outbox')
    op.drop_table('billing_webhook_event')
    op.drop_table('setting')
    op.drop_index('ix_engagement_note_engagement_id', table_name='engagement_note')
    op.drop_table('engagement_note')
    op.drop_index('ix_recurrence_request_engagement_id', table_name='recurrence_request')
    op.drop_table('recurrence_request')
    op.drop_index('ix_calendar_event_owner_id', table_name='calendar_event')
    op.drop_index('ix_calendar_event_engagement_id', table_name='calendar_event')
    op.drop_index('ix_calendar_event_start', table_name='calendar_event')
    op.drop_table('calendar_event')
    op.drop_index('ix_line_item_engagement_id', table_name='line_item')
    op.drop_table('line_item')
    op.drop_index('ix_engagement_status', table_name='engagement')
    op.drop_index('ix_engagement_owner_id', table_name='engagement')
    op.drop_table('engagement')
    op.drop_table('user')
