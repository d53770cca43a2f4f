"""
Unit tests for NotificationDispatcher
"""

from contextlib import contextmanager
from types import SimpleNamespace
from unittest.mock import MagicMock, Mock

import pytest

from services.common.errors import StoreFailure
from services.enums import EngagementAction, EngagementStatus
from services.notification_dispatcher import NotificationDispatcher, NotificationMessage


def create_store_with_mocks(admin_ids=(1, 2)):
    """Store double whose outbox assigns sequential ids"""
    store = MagicMock()
    store.users.find_admin_ids.return_value = list(admin_ids)

    counter = {'next': 100}

    def create(**kwargs):
        counter['next'] += 1
        return SimpleNamespace(id=counter['next'], **kwargs)

    store.outbox.create.side_effect = create

    @contextmanager
    def transaction():
        yield store

    store.transaction.side_effect = transaction
    return store


@pytest.fixture
def engagement():
    return SimpleNamespace(id='eng-1', owner_id=7, title='Gutters',
                           status=EngagementStatus.SENT, total_amount_cents=15100)


class TestBuildMessages:

    def test_owner_message_for_send(self, engagement):
        dispatcher = NotificationDispatcher(create_store_with_mocks())

        messages = dispatcher.build_messages(EngagementAction.SEND, engagement)

        assert messages == [NotificationMessage(
            type='quote_created',
            recipient_id=7,
            data={'engagementId': 'eng-1', 'title': 'Gutters', 'status': 'sent', 'totalAmountCents': 15100},
            channels=('email',),
        )]

    def test_admin_messages_include_extra_data(self, engagement):
        store = create_store_with_mocks(admin_ids=(1, 2))
        dispatcher = NotificationDispatcher(store)

        messages = dispatcher.build_messages(EngagementAction.REQUEST_REVISION, engagement,
                                             {'reason': 'Add the shed'})

        assert [m.recipient_id for m in messages] == [1, 2]
        assert all(m.type == 'quote_revision_requested' for m in messages)
        assert all(m.data['reason'] == 'Add the shed' for m in messages)
        assert messages[0].data is not messages[1].data

    def test_payment_goes_to_owner_and_admins(self, engagement):
        store = create_store_with_mocks(admin_ids=(1,))
        dispatcher = NotificationDispatcher(store)

        messages = dispatcher.build_messages(EngagementAction.PAYMENT_SUCCEEDED, engagement)

        assert [(m.recipient_id, m.channels) for m in messages] == [(7, ('push',)), (1, ('email',))]
        store.users.find_admin_ids.assert_called_once_with()

    def test_silent_action(self, engagement):
        store = create_store_with_mocks()
        dispatcher = NotificationDispatcher(store)

        assert dispatcher.build_messages(EngagementAction.REVISE, engagement) == []
        store.users.find_admin_ids.assert_not_called()


class TestDispatch:

    def test_stores_and_enqueues(self, engagement):
        store = create_store_with_mocks(admin_ids=(1,))
        enqueue = Mock()
        dispatcher = NotificationDispatcher(store, enqueue=enqueue)

        outbox_ids = dispatcher.dispatch_for_action(EngagementAction.PAYMENT_SUCCEEDED, engagement)

        assert outbox_ids == [101, 102]
        assert [c.args[0] for c in enqueue.call_args_list] == [101, 102]
        first = store.outbox.create.call_args_list[0].kwargs
        assert first['type'] == 'invoice_paid'
        assert first['recipient_id'] == 7
        assert first['channels'] == ['push']

    def test_without_enqueue_rows_stay_pending(self, engagement):
        store = create_store_with_mocks()
        dispatcher = NotificationDispatcher(store)

        assert dispatcher.dispatch_for_action(EngagementAction.SEND, engagement) == [101]

    def test_enqueue_failure_is_not_raised(self, engagement):
        store = create_store_with_mocks()
        dispatcher = NotificationDispatcher(store, enqueue=Mock(side_effect=ConnectionError('broker down')))

        assert dispatcher.dispatch_for_action(EngagementAction.SEND, engagement) == [101]

    def test_store_failure_is_not_raised(self, engagement):
        store = create_store_with_mocks()

        @contextmanager
        def failing_transaction():
            yield store
            raise StoreFailure("could not commit")

        store.transaction.side_effect = failing_transaction
        enqueue = Mock()
        dispatcher = NotificationDispatcher(store, enqueue=enqueue)

        assert dispatcher.dispatch_for_action(EngagementAction.SEND, engagement) == []
        enqueue.assert_not_called()

    def test_empty_dispatch_skips_store(self):
        store = create_store_with_mocks()
        dispatcher = NotificationDispatcher(store)

        assert dispatcher.dispatch([]) == []
        store.transaction.assert_not_called()

    def test_notify_admins(self):
        dispatcher = NotificationDispatcher(create_store_with_mocks(admin_ids=(3, 4)))

        messages = dispatcher.notify_admins('recurrence_request_new', {'requestId': 1}, ('push', 'email'))

        assert [m.recipient_id for m in messages] == [3, 4]
        assert messages[0].to_dict() == {
            'type': 'recurrence_request_new',
            'userId': 3,
            'data': {'requestId': 1},
            'channels': ['push', 'email'],
        }
