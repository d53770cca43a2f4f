"""
Route tests for the engagement API
"""

import pytest


def _create(client, headers, line_items, who='admin', **extra):
    body = {'title': 'Spring gutters', 'line_items': line_items}
    body.update(extra)
    return client.post('/api/engagements', json=body, headers=headers(who))


@pytest.fixture
def engagement_id(client, headers, users, line_items):
    response = _create(client, headers, line_items, owner_id=users['customer'])
    assert response.status_code == 201
    return response.get_json()['engagement']['id']


class TestAuthentication:

    def test_requires_identity(self, client):
        response = client.get('/api/engagements')
        assert response.status_code == 401
        assert response.get_json()['code'] == 'UNAUTHORIZED'

    def test_unknown_user_id(self, client):
        response = client.get('/api/engagements', headers={'X-Test-User-Id': '9999'})
        assert response.status_code == 401

    def test_health_needs_no_identity(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json()['database'] == 'connected'


class TestCreate:

    def test_admin_creates_for_customer(self, client, headers, users, line_items):
        response = _create(client, headers, line_items, owner_id=users['customer'],
                           start='2026-04-07T13:00:00Z', end='2026-04-07T15:00:00Z')

        assert response.status_code == 201
        body = response.get_json()
        assert body['engagement']['owner_id'] == users['customer']
        assert body['engagement']['status'] == 'draft'
        assert body['engagement']['total_amount_cents'] == 15100
        assert body['booking_warnings'] == []

    def test_customer_creates_for_self(self, client, headers, users, line_items):
        response = _create(client, headers, line_items, who='customer', owner_id=users['other'])

        assert response.status_code == 201
        assert response.get_json()['engagement']['owner_id'] == users['customer']

    def test_customer_cannot_send(self, client, headers, line_items):
        response = _create(client, headers, line_items, who='customer', send=True)
        assert response.status_code == 403

    def test_customer_cannot_set_due(self, client, headers, line_items):
        response = _create(client, headers, line_items, who='customer', due='2099-01-01T00:00:00Z')
        assert response.status_code == 403

    def test_validation_error_shape(self, client, headers, line_items):
        line_items[1]['quantity'] = 0
        response = _create(client, headers, line_items)

        assert response.status_code == 400
        assert response.get_json() == {
            'error': 'Line item quantity must be an integer of at least 1',
            'code': 'VALIDATION_ERROR',
            'details': {'index': 1, 'field': 'quantity'},
        }

    def test_body_must_be_object(self, client, headers):
        response = client.post('/api/engagements', json=['x'], headers=headers())
        assert response.status_code == 400


class TestLifecycle:

    def test_send_is_admin_only(self, client, headers, engagement_id):
        response = client.post(f'/api/engagements/{engagement_id}/send', headers=headers('customer'))
        assert response.status_code == 403

    def test_send_accept_flow(self, client, headers, engagement_id):
        response = client.post(f'/api/engagements/{engagement_id}/send', headers=headers())
        assert response.get_json()['status'] == 'sent'

        response = client.post(f'/api/engagements/{engagement_id}/accept', headers=headers('customer'))
        assert response.status_code == 200
        assert response.get_json()['status'] == 'scheduled'

    def test_invalid_transition_is_conflict(self, client, headers, engagement_id):
        response = client.post(f'/api/engagements/{engagement_id}/accept', headers=headers('customer'))

        assert response.status_code == 409
        body = response.get_json()
        assert body['code'] == 'INVALID_TRANSITION'
        assert body['details'] == {'action': 'accept', 'current_status': 'draft'}

    def test_other_customer_gets_not_found(self, client, headers, engagement_id):
        client.post(f'/api/engagements/{engagement_id}/send', headers=headers())

        for path in ('', '/notes'):
            assert client.get(f'/api/engagements/{engagement_id}{path}',
                              headers=headers('other')).status_code == 404
        response = client.post(f'/api/engagements/{engagement_id}/accept', headers=headers('other'))
        assert response.status_code == 404

    def test_revision_note_is_listed(self, client, headers, engagement_id):
        client.post(f'/api/engagements/{engagement_id}/send', headers=headers())

        response = client.post(f'/api/engagements/{engagement_id}/revision',
                               json={'reason': 'Add the shed'}, headers=headers('customer'))
        assert response.get_json()['status'] == 'revision_requested'

        notes = client.get(f'/api/engagements/{engagement_id}/notes', headers=headers('customer')).get_json()
        assert [(n['kind'], n['body']) for n in notes['notes']] == [('revision_request', 'Add the shed')]

    def test_invoice_and_mark_paid(self, client, headers, engagement_id):
        client.post(f'/api/engagements/{engagement_id}/send', headers=headers())
        client.post(f'/api/engagements/{engagement_id}/accept', headers=headers('customer'))

        response = client.post(f'/api/engagements/{engagement_id}/invoice',
                               json={'external_invoice_ref': 'inv_77'}, headers=headers())
        assert response.get_json()['status'] == 'payment_needed'

        response = client.post(f'/api/engagements/{engagement_id}/mark-paid', headers=headers())
        assert response.get_json()['status'] == 'complete'

    def test_payment_intent_without_provider(self, client, headers, engagement_id):
        client.post(f'/api/engagements/{engagement_id}/send', headers=headers())
        client.post(f'/api/engagements/{engagement_id}/accept', headers=headers('customer'))
        client.post(f'/api/engagements/{engagement_id}/invoice',
                    json={'external_invoice_ref': 'inv_77'}, headers=headers())

        response = client.post(f'/api/engagements/{engagement_id}/payment-intent', headers=headers('customer'))

        assert response.status_code == 502
        assert response.get_json()['code'] == 'BILLING_PROVIDER_ERROR'


class TestCustomerLimits:

    @pytest.fixture
    def invoiced_id(self, client, headers, engagement_id):
        client.post(f'/api/engagements/{engagement_id}/send', headers=headers())
        client.post(f'/api/engagements/{engagement_id}/accept', headers=headers('customer'))
        client.post(f'/api/engagements/{engagement_id}/invoice',
                    json={'external_invoice_ref': 'inv_77'}, headers=headers())
        return engagement_id

    def _status(self, client, headers, engagement_id):
        return client.get(f'/api/engagements/{engagement_id}', headers=headers()).get_json()['status']

    def test_customer_cannot_cancel_unpaid_invoice(self, client, headers, invoiced_id):
        response = client.post(f'/api/engagements/{invoiced_id}/cancel', headers=headers('customer'))

        assert response.status_code == 403
        body = response.get_json()
        assert body['code'] == 'FORBIDDEN'
        assert body['details'] == {'action': 'cancel', 'current_status': 'payment_needed'}
        assert self._status(client, headers, invoiced_id) == 'payment_needed'

    def test_customer_cannot_cancel_overdue_invoice(self, client, headers, invoiced_id):
        client.post(f'/api/engagements/{invoiced_id}/overdue', headers=headers())

        response = client.post(f'/api/engagements/{invoiced_id}/cancel', headers=headers('customer'))

        assert response.status_code == 403
        assert self._status(client, headers, invoiced_id) == 'payment_overdue'

    def test_customer_cancels_sent_quote(self, client, headers, engagement_id):
        client.post(f'/api/engagements/{engagement_id}/send', headers=headers())

        response = client.post(f'/api/engagements/{engagement_id}/cancel',
                               json={'reason': 'Found someone closer'}, headers=headers('customer'))

        assert response.status_code == 200
        assert response.get_json()['status'] == 'canceled'

    def test_admin_cancels_unpaid_invoice(self, client, headers, invoiced_id):
        response = client.post(f'/api/engagements/{invoiced_id}/cancel', headers=headers())

        assert response.status_code == 200
        assert response.get_json()['status'] == 'canceled'

    def test_customer_cannot_move_due_date(self, client, headers, invoiced_id):
        response = client.patch(f'/api/engagements/{invoiced_id}',
                                json={'due': '2099-01-01T00:00:00Z'}, headers=headers('customer'))

        assert response.status_code == 403
        engagement = client.get(f'/api/engagements/{invoiced_id}', headers=headers()).get_json()
        assert engagement['due'] is None
        assert engagement['status'] == 'payment_needed'

    def test_customer_cannot_set_due_on_draft(self, client, headers, engagement_id):
        response = client.patch(f'/api/engagements/{engagement_id}',
                                json={'due': '2099-01-01T00:00:00Z'}, headers=headers('customer'))
        assert response.status_code == 403

    def test_customer_cannot_edit_invoice(self, client, headers, invoiced_id):
        response = client.patch(f'/api/engagements/{invoiced_id}',
                                json={'title': 'Free gutters'}, headers=headers('customer'))
        assert response.status_code == 403

    def test_customer_edits_quote_title(self, client, headers, engagement_id):
        response = client.patch(f'/api/engagements/{engagement_id}',
                                json={'title': 'Gutters and shed'}, headers=headers('customer'))

        assert response.status_code == 200
        assert response.get_json()['title'] == 'Gutters and shed'

    def test_admin_moves_due_date(self, client, headers, invoiced_id):
        response = client.patch(f'/api/engagements/{invoiced_id}',
                                json={'due': '2026-05-01T00:00:00Z'}, headers=headers())

        assert response.status_code == 200
        assert response.get_json()['due'].startswith('2026-05-01T00:00:00')


class TestEditing:

    def test_replace_line_items(self, client, headers, engagement_id):
        response = client.put(f'/api/engagements/{engagement_id}/line-items',
                              json={'line_items': [{'description': 'Roof wash', 'quantity': 1,
                                                    'unit_amount_cents': 30000}]},
                              headers=headers('customer'))

        assert response.status_code == 200
        assert response.get_json()['total_amount_cents'] == 30000

    def test_replace_requires_field(self, client, headers, engagement_id):
        response = client.put(f'/api/engagements/{engagement_id}/line-items', json={}, headers=headers())
        assert response.status_code == 400

    def test_schedule_reports_warnings(self, client, headers, engagement_id):
        client.post('/api/admin/calendar/blocked-days', json={'day': '2026-04-10'}, headers=headers())

        response = client.post(f'/api/engagements/{engagement_id}/schedule',
                               json={'start': '2026-04-10T09:00:00Z', 'end': '2026-04-10T10:00:00Z'},
                               headers=headers())

        assert response.status_code == 200
        assert response.get_json()['booking_warnings'] == [{'date': '2026-04-10', 'reasons': ['blocked']}]


class TestListing:

    def test_customer_sees_own_engagements(self, client, headers, users, line_items):
        for _ in range(3):
            _create(client, headers, line_items, owner_id=users['customer'])
        _create(client, headers, line_items, owner_id=users['other'])

        body = client.get('/api/engagements?per_page=2', headers=headers('customer')).get_json()

        assert body['total'] == 3
        assert body['pages'] == 2
        assert len(body['engagements']) == 2
        assert 'line_items' not in body['engagements'][0]
        assert body['has_next'] is True

        last = client.get('/api/engagements?per_page=2&page=2', headers=headers('customer')).get_json()
        assert len(last['engagements']) == 1
        assert last['has_next'] is False

    def test_admin_filters_by_owner_and_status(self, client, headers, users, line_items):
        _create(client, headers, line_items, owner_id=users['customer'], send=True)
        _create(client, headers, line_items, owner_id=users['other'])

        body = client.get(f'/api/engagements?owner_id={users["customer"]}&status=sent',
                          headers=headers()).get_json()

        assert body['total'] == 1
        assert body['engagements'][0]['status'] == 'sent'

    def test_bad_status_filter(self, client, headers):
        response = client.get('/api/engagements?status=bogus', headers=headers())
        assert response.status_code == 400
