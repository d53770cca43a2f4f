"""
Integration tests for EngagementService against the database
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from portal_database import CalendarEvent, Engagement, LineItem, NotificationOutbox
from services.common.errors import (
    BillingProviderError,
    Forbidden,
    InvalidTransition,
    NotFound,
    StoreFailure,
    ValidationError,
)
from services.enums import CalendarEventType, EngagementAction, EngagementStatus, NoteKind, OutboxStatus


def _count(store, model):
    return store.session.query(model).count()


@pytest.fixture
def draft(engagement_service, users, line_items):
    return engagement_service.create_engagement(users['customer'], 'Spring gutters', line_items).engagement


@pytest.fixture
def sent(engagement_service, draft, users):
    return engagement_service.send(draft.id, actor_id=users['admin'])


class TestCreateEngagement:

    def test_total_is_sum_of_line_items(self, engagement_service, users, line_items):
        result = engagement_service.create_engagement(users['customer'], 'Spring gutters', line_items)

        engagement = result.engagement
        assert engagement.status == EngagementStatus.DRAFT
        assert engagement.total_amount_cents == 15100
        assert [item.line_total_cents for item in engagement.line_items] == [10000, 5100]
        assert result.booking_warnings == []

    def test_no_items_gives_zero_total(self, engagement_service, users):
        engagement = engagement_service.create_engagement(users['customer'], 'Site visit').engagement
        assert engagement.total_amount_cents == 0

    def test_window_creates_job_event(self, engagement_service, store, users, line_items):
        engagement = engagement_service.create_engagement(
            users['customer'], 'Spring gutters', line_items,
            start='2026-04-07T13:00:00Z', end='2026-04-07T15:00:00Z',
        ).engagement

        events = store.calendar_events.find_by_engagement_id(engagement.id)
        assert len(events) == 1
        assert events[0].type == CalendarEventType.JOB
        assert events[0].owner_id == users['customer']

    def test_half_window_writes_nothing(self, engagement_service, store, users, line_items):
        with pytest.raises(ValidationError):
            engagement_service.create_engagement(users['customer'], 'Spring gutters', line_items,
                                                 start='2026-04-07T13:00:00Z')

        assert _count(store, Engagement) == 0
        assert _count(store, LineItem) == 0
        assert _count(store, CalendarEvent) == 0

    def test_store_failure_before_job_event_writes_nothing(self, engagement_service, store, users, line_items):
        failure = IntegrityError('INSERT INTO calendar_event', {}, Exception('constraint failed'))
        with patch.object(store.calendar_events, 'create', side_effect=failure):
            with pytest.raises(StoreFailure) as exc_info:
                engagement_service.create_engagement(users['customer'], 'Spring gutters', line_items,
                                                     start='2026-04-07T13:00:00Z', end='2026-04-07T15:00:00Z')

        assert exc_info.value.details == {'reason': 'IntegrityError'}
        assert _count(store, Engagement) == 0
        assert _count(store, LineItem) == 0
        assert _count(store, CalendarEvent) == 0

    def test_invalid_item_writes_nothing(self, engagement_service, store, users):
        with pytest.raises(ValidationError):
            engagement_service.create_engagement(users['customer'], 'Spring gutters',
                                                 [{'description': 'x', 'quantity': 0, 'unit_amount_cents': 1}])
        assert _count(store, Engagement) == 0

    def test_unknown_owner(self, engagement_service):
        with pytest.raises(NotFound):
            engagement_service.create_engagement(424242, 'Spring gutters')

    def test_send_on_create_needs_items(self, engagement_service, store, users):
        with pytest.raises(ValidationError):
            engagement_service.create_engagement(users['customer'], 'Spring gutters', send=True)
        assert _count(store, Engagement) == 0

    def test_send_on_create(self, engagement_service, store, users, line_items):
        engagement = engagement_service.create_engagement(users['customer'], 'Spring gutters',
                                                          line_items, send=True).engagement

        assert engagement.status == EngagementStatus.SENT
        outbox = store.outbox.find_by_recipient(users['customer'], 'quote_created')
        assert len(outbox) == 1
        assert outbox[0].status == OutboxStatus.PENDING

    def test_booking_warnings_for_blocked_and_booked_days(self, app, engagement_service, users, line_items):
        app.services.get('calendar').block_day('2026-04-07')
        booked = engagement_service.create_engagement(
            users['other'], 'Roof wash', line_items,
            start='2026-04-08T09:00:00Z', end='2026-04-08T10:00:00Z', send=True,
        ).engagement
        engagement_service.accept(booked.id)

        result = engagement_service.create_engagement(
            users['customer'], 'Spring gutters', line_items,
            start='2026-04-07T09:00:00Z', end='2026-04-09T10:00:00Z',
        )

        assert result.booking_warnings == [
            {'date': '2026-04-07', 'reasons': ['blocked']},
            {'date': '2026-04-08', 'reasons': ['booked']},
        ]
        # Warnings never block the creation
        assert result.engagement.status == EngagementStatus.DRAFT


class TestSend:

    def test_send_requires_line_items(self, engagement_service, users):
        engagement = engagement_service.create_engagement(users['customer'], 'Site visit').engagement

        with pytest.raises(ValidationError):
            engagement_service.send(engagement.id)

        assert engagement_service.get_engagement(engagement.id).status == EngagementStatus.DRAFT

    def test_send_moves_to_sent(self, sent):
        assert sent.status == EngagementStatus.SENT

    def test_send_creates_provider_quote(self, engagement_service, draft):
        billing_client = Mock()
        billing_client.create_quote.return_value = {'id': 'qt_42'}
        engagement_service.billing_client = billing_client

        engagement = engagement_service.send(draft.id)

        assert engagement.external_quote_ref == 'qt_42'
        customer_ref, items, metadata = billing_client.create_quote.call_args.args
        assert customer_ref == 'cus_casey'
        assert [item['line_total_cents'] for item in items] == [10000, 5100]
        assert metadata['engagement_id'] == draft.id

    def test_provider_failure_leaves_draft(self, engagement_service, draft):
        billing_client = Mock()
        billing_client.create_quote.side_effect = BillingProviderError("provider down")
        engagement_service.billing_client = billing_client

        with pytest.raises(BillingProviderError):
            engagement_service.send(draft.id)

        assert engagement_service.get_engagement(draft.id).status == EngagementStatus.DRAFT


class TestTransitions:

    def test_invalid_transition_leaves_state_unchanged(self, engagement_service, store, draft):
        outbox_before = _count(store, NotificationOutbox)

        with pytest.raises(InvalidTransition) as exc_info:
            engagement_service.accept(draft.id)

        assert exc_info.value.action == 'accept'
        assert exc_info.value.current_status == 'draft'
        assert exc_info.value.http_status == 409
        assert engagement_service.get_engagement(draft.id).status == EngagementStatus.DRAFT
        assert _count(store, NotificationOutbox) == outbox_before

    def test_accept_notifies_admins(self, engagement_service, store, sent, users):
        engagement = engagement_service.accept(sent.id, owner_id=users['customer'])

        assert engagement.status == EngagementStatus.SCHEDULED
        assert len(store.outbox.find_by_recipient(users['admin'], 'quote_accepted')) == 1

    def test_owner_scope_hides_other_customers(self, engagement_service, sent, users):
        with pytest.raises(NotFound):
            engagement_service.accept(sent.id, owner_id=users['other'])

    def test_revision_round_trip(self, engagement_service, store, sent, users):
        engagement_service.request_revision(sent.id, '  Add the shed  ', owner_id=users['customer'])

        notes = store.notes.find_by_engagement_id(sent.id, NoteKind.REVISION_REQUEST)
        assert [note.body for note in notes] == ['Add the shed']
        admin_message = store.outbox.find_by_recipient(users['admin'], 'quote_revision_requested')[0]
        assert admin_message.data['reason'] == 'Add the shed'

        engagement = engagement_service.revise(sent.id)
        assert engagement.status == EngagementStatus.DRAFT
        assert engagement.external_quote_ref is None

    def test_revision_needs_reason(self, engagement_service, sent):
        with pytest.raises(ValidationError):
            engagement_service.request_revision(sent.id, '   ')
        assert engagement_service.get_engagement(sent.id).status == EngagementStatus.SENT

    def test_decline_then_revise(self, engagement_service, sent):
        assert engagement_service.decline(sent.id).status == EngagementStatus.DECLINED
        assert engagement_service.revise(sent.id).status == EngagementStatus.DRAFT

    def test_invoice_payment_path(self, engagement_service, store, sent, users):
        engagement_service.accept(sent.id)
        engagement = engagement_service.mark_invoice_created(sent.id, 'inv_1')
        assert engagement.status == EngagementStatus.PAYMENT_NEEDED
        assert engagement.external_invoice_ref == 'inv_1'

        assert engagement_service.mark_overdue(sent.id).status == EngagementStatus.PAYMENT_OVERDUE
        assert engagement_service.mark_paid(sent.id).status == EngagementStatus.COMPLETE

        with pytest.raises(InvalidTransition):
            engagement_service.cancel(sent.id)

    def test_cancel_records_note(self, engagement_service, store, draft):
        engagement_service.cancel(draft.id, reason='Moved house')

        notes = store.notes.find_by_engagement_id(draft.id, NoteKind.CANCELLATION)
        assert [note.body for note in notes] == ['Moved house']

    def test_owner_cancel_limited_to_quote_stage(self, engagement_service, sent, users):
        engagement_service.accept(sent.id)
        engagement_service.mark_invoice_created(sent.id, 'inv_1')

        with pytest.raises(Forbidden):
            engagement_service.cancel(sent.id, owner_id=users['customer'])

        assert engagement_service.get_engagement(sent.id).status == EngagementStatus.PAYMENT_NEEDED

    def test_concurrent_change_is_rejected(self, engagement_service, store, sent):
        engagement = engagement_service.get_engagement(sent.id)
        assert engagement.status == EngagementStatus.SENT
        # Another writer moves the row after it was read; the loaded object keeps its stale status
        store.session.execute(
            update(Engagement)
            .where(Engagement.id == sent.id)
            .values(status=EngagementStatus.DECLINED)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(InvalidTransition) as exc_info:
            with store.transaction():
                engagement_service.apply_transition(engagement, EngagementAction.ACCEPT)

        assert exc_info.value.current_status == 'declined'


class TestEditing:

    def test_replace_line_items_recomputes_total(self, engagement_service, draft):
        engagement = engagement_service.replace_line_items(
            draft.id, [{'description': 'Roof wash', 'quantity': 1, 'unit_amount_cents': 30000}]
        )
        assert engagement.total_amount_cents == 30000
        assert [item.description for item in engagement.line_items] == ['Roof wash']

    def test_total_matches_stored_rows_after_replace(self, engagement_service, store, draft):
        engagement_service.replace_line_items(draft.id, [
            {'description': 'Roof wash', 'quantity': 3, 'unit_amount_cents': 1250},
            {'description': 'Moss treatment', 'quantity': 1, 'unit_amount_cents': 4000},
        ])

        stored = store.line_items.find_by_engagement_id(draft.id)
        assert sum(item.quantity * item.unit_amount_cents for item in stored) == 7750
        assert engagement_service.get_engagement(draft.id).total_amount_cents == 7750

    def test_line_items_frozen_after_acceptance(self, engagement_service, sent):
        engagement_service.accept(sent.id)

        with pytest.raises(InvalidTransition):
            engagement_service.replace_line_items(sent.id, [])

        assert engagement_service.get_engagement(sent.id).total_amount_cents == 15100

    def test_update_details(self, engagement_service, draft):
        engagement = engagement_service.update_details(draft.id, {'title': 'Autumn gutters',
                                                                  'recurrence_pattern': 'monthly'})
        assert engagement.title == 'Autumn gutters'
        assert engagement.recurrence_pattern.value == 'monthly'

    def test_update_rejects_unknown_fields(self, engagement_service, draft):
        with pytest.raises(ValidationError) as exc_info:
            engagement_service.update_details(draft.id, {'status': 'complete'})
        assert exc_info.value.details == {'fields': ['status']}

    def test_schedule_moves_existing_slot(self, engagement_service, store, draft):
        engagement_service.schedule_engagement(draft.id, '2026-05-01T09:00:00Z', '2026-05-01T10:00:00Z')
        engagement_service.schedule_engagement(draft.id, '2026-05-02T09:00:00Z', '2026-05-02T10:00:00Z')

        events = store.calendar_events.find_by_engagement_id(draft.id)
        assert len(events) == 1
        assert events[0].start.replace(tzinfo=timezone.utc) == datetime(2026, 5, 2, 9, tzinfo=timezone.utc)


class TestPaymentIntent:

    def test_requires_payable_status(self, engagement_service, sent):
        with pytest.raises(InvalidTransition):
            engagement_service.create_payment_intent(sent.id)

    def test_without_provider(self, engagement_service, sent):
        engagement_service.accept(sent.id)
        engagement_service.mark_invoice_created(sent.id, 'inv_1')

        with pytest.raises(BillingProviderError):
            engagement_service.create_payment_intent(sent.id)

    def test_requests_total_from_provider(self, engagement_service, sent):
        engagement_service.accept(sent.id)
        engagement_service.mark_invoice_created(sent.id, 'inv_1')
        billing_client = Mock()
        billing_client.create_payment_intent.return_value = {'id': 'pi_1', 'client_secret': 'secret'}
        engagement_service.billing_client = billing_client

        intent = engagement_service.create_payment_intent(sent.id)

        assert intent['id'] == 'pi_1'
        billing_client.create_payment_intent.assert_called_once_with(
            'cus_casey', 15100, metadata={'engagement_id': sent.id, 'invoice_ref': 'inv_1'}
        )


def test_list_engagements_pages_and_filters(engagement_service, users, line_items):
    for index in range(3):
        engagement_service.create_engagement(users['customer'], f'Job {index}', line_items)
    engagement_service.create_engagement(users['other'], 'Other job', line_items, send=True)

    page = engagement_service.list_engagements(owner_id=users['customer'], per_page=2)
    assert page.total == 3
    assert len(page.items) == 2

    sent_only = engagement_service.list_engagements(statuses=['sent'])
    assert [e.title for e in sent_only.items] == ['Other job']

    with pytest.raises(ValidationError):
        engagement_service.list_engagements(statuses=['bogus'])


def test_due_timestamps_are_stored(engagement_service, users, line_items):
    due = datetime.now(timezone.utc) + timedelta(days=7)
    engagement = engagement_service.create_engagement(users['customer'], 'Spring gutters', line_items,
                                                      due=due.isoformat()).engagement
    assert engagement.due is not None
