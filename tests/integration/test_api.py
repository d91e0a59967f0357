"""
API tests through the Flask test client.
"""

import pytest


@pytest.fixture
def quotation_id(draft_quotation):
    return draft_quotation.id


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json()['database'] == 'connected'


def test_cache_health_degrades_without_redis(client):
    response = client.get('/health/cache')
    assert response.status_code == 200
    assert response.get_json()['cache'] == 'unavailable'


def test_metrics_endpoint(client):
    client.get('/health')
    response = client.get('/metrics')
    assert response.status_code == 200
    assert b'http_requests_total' in response.data


def test_unknown_route_is_json(client):
    response = client.get('/api/nothing-here')
    assert response.status_code == 404
    assert response.get_json()['status'] == 'error'


def test_login_required(client):
    response = client.get('/api/quotations')
    assert response.status_code == 401


class TestCompaniesApi:

    def test_sign_up_logs_owner_in(self, client):
        response = client.post('/api/companies', json={
            'name': 'Umbrella Parts', 'owner_email': 'ceo@umbrella.test', 'currency': 'EUR',
        })

        assert response.status_code == 201
        data = response.get_json()
        assert data['company']['slug'] == 'umbrella-parts'
        assert data['owner']['role'] == 'OWNER'
        assert data['settings']['currency'] == 'EUR'

        current = client.get('/api/companies/current')
        assert current.status_code == 200
        assert current.get_json()['name'] == 'Umbrella Parts'

    def test_sign_up_validation(self, client):
        response = client.post('/api/companies', json={'name': 'X', 'owner_email': 'nope'})
        assert response.status_code == 400
        assert response.get_json()['field'] == 'owner_email'

    def test_non_json_body(self, client):
        response = client.post('/api/companies', data='name=X', content_type='application/x-www-form-urlencoded')
        assert response.status_code == 400

    def test_settings(self, authenticated_client):
        response = authenticated_client.put('/api/companies/current/settings', json={'quote_valid_days': 14})
        assert response.status_code == 200
        assert response.get_json()['quote_valid_days'] == 14

        response = authenticated_client.put('/api/companies/current/settings', json={'minor_units': 5})
        assert response.status_code == 400

    def test_settings_require_owner_or_admin(self, client, session, company):
        from quotation_tool.models import AppUser, UserRole
        sales = AppUser(company_id=company.id, email='rep@acme.test', role=UserRole.SALES)
        session.add(sales)
        session.commit()

        with client.session_transaction() as sess:
            sess['user_id'] = sales.id
            sess['company_id'] = company.id

        assert client.get('/api/companies/current/settings').status_code == 200
        response = client.put('/api/companies/current/settings', json={'quote_valid_days': 3})
        assert response.status_code == 403
        assert response.get_json()['error'] == 'UnauthorizedError'


class TestClientsApi:

    def test_create_and_list(self, authenticated_client):
        response = authenticated_client.post('/api/clients', json={'name': 'Hooli', 'email': 'buy@hooli.test'})
        assert response.status_code == 201
        client_id = response.get_json()['id']

        listing = authenticated_client.get('/api/clients?q=hoo').get_json()['clients']
        assert [c['id'] for c in listing] == [client_id]
        assert authenticated_client.get(f'/api/clients/{client_id}').status_code == 200

    def test_name_required(self, authenticated_client):
        assert authenticated_client.post('/api/clients', json={'email': 'a@b.test'}).status_code == 400


class TestQuotationsApi:

    def test_create(self, authenticated_client, customer, items_data):
        response = authenticated_client.post('/api/quotations', json={
            'client_id': customer.id, 'items': items_data, 'title': 'Spring order',
        })

        assert response.status_code == 201
        data = response.get_json()
        assert data['status'] == 'draft'
        assert data['grand_total'] == '1163.50'
        assert len(data['lines']) == 2
        assert data['available_transitions'] == ['cancelled', 'sent']

    def test_create_with_invalid_item(self, authenticated_client):
        response = authenticated_client.post('/api/quotations', json={
            'items': [{'description': 'Bolts', 'quantity': 1, 'unit_price': '-1'}],
        })

        assert response.status_code == 400
        body = response.get_json()
        assert body['error'] == 'InvalidLineItem'
        assert body['index'] == 0
        assert body['field'] == 'unit_price'

    def test_get_and_list(self, authenticated_client, quotation_id):
        detail = authenticated_client.get(f'/api/quotations/{quotation_id}')
        assert detail.status_code == 200
        assert detail.get_json()['title'] == 'Website relaunch'

        listing = authenticated_client.get('/api/quotations?status=draft').get_json()['quotations']
        assert [q['id'] for q in listing] == [quotation_id]
        assert 'lines' not in listing[0]

    def test_other_tenant_cannot_see_quotation(self, client, quotation_id, company2, owner2):
        with client.session_transaction() as sess:
            sess['user_id'] = owner2.id
            sess['company_id'] = company2.id

        assert client.get(f'/api/quotations/{quotation_id}').status_code == 404
        response = client.post(f'/api/quotations/{quotation_id}/transitions', json={'status': 'cancelled'})
        assert response.status_code == 404

    def test_send(self, authenticated_client, quotation_id):
        response = authenticated_client.post(f'/api/quotations/{quotation_id}/transitions', json={
            'status': 'sent', 'version': 1,
        })

        assert response.status_code == 200
        data = response.get_json()
        assert data['previous_status'] == 'draft'
        assert data['new_status'] == 'sent'
        assert data['quotation']['version'] == 2
        assert data['quotation']['available_transitions'] == ['cancelled', 'viewed']
        assert [e['idempotency_key'] for e in data['side_effects']] == [f'quotation:{quotation_id}:sent:email']

    def test_send_invalid_draft(self, authenticated_client):
        created = authenticated_client.post('/api/quotations', json={}).get_json()

        response = authenticated_client.post(f"/api/quotations/{created['id']}/transitions", json={'status': 'sent'})

        assert response.status_code == 422
        codes = [e['code'] for e in response.get_json()['errors']]
        assert codes == ['missing_client', 'no_items']

    def test_stale_version(self, authenticated_client, quotation_id):
        url = f'/api/quotations/{quotation_id}/transitions'
        authenticated_client.post(url, json={'status': 'sent', 'version': 1})

        response = authenticated_client.post(url, json={'status': 'cancelled', 'version': 1})

        assert response.status_code == 409
        assert response.get_json()['error'] == 'ConcurrentUpdateError'

    def test_rejection_needs_reason(self, authenticated_client, quotation_id):
        url = f'/api/quotations/{quotation_id}/transitions'
        authenticated_client.post(url, json={'status': 'sent'})
        authenticated_client.post(url, json={'status': 'viewed'})

        response = authenticated_client.post(url, json={'status': 'rejected'})
        assert response.status_code == 400
        assert response.get_json()['field'] == 'reason'

        response = authenticated_client.post(url, json={'status': 'rejected', 'reason': 'Budget constraints'})
        assert response.status_code == 200

        response = authenticated_client.post(url, json={'status': 'sent'})
        assert response.status_code == 409
        assert response.get_json()['error'] == 'TerminalState'

    def test_items_frozen_after_send(self, authenticated_client, quotation_id):
        authenticated_client.post(f'/api/quotations/{quotation_id}/transitions', json={'status': 'sent'})

        response = authenticated_client.put(f'/api/quotations/{quotation_id}/items', json={
            'items': [{'description': 'Extra', 'quantity': 1, 'unit_price': '5'}],
        })
        assert response.status_code == 409
        assert response.get_json()['error'] == 'ItemsFrozen'

    def test_replace_items(self, authenticated_client, quotation_id):
        response = authenticated_client.put(f'/api/quotations/{quotation_id}/items', json={
            'items': [{'description': 'Extra', 'quantity': 4, 'unit_price': '2.50'}],
            'version': 1,
        })

        assert response.status_code == 200
        assert response.get_json()['grand_total'] == '10.00'

    def test_patch_details(self, authenticated_client, quotation_id):
        response = authenticated_client.patch(f'/api/quotations/{quotation_id}', json={
            'title': 'Relaunch v2', 'valid_until': 'next week',
        })
        assert response.status_code == 400

        response = authenticated_client.patch(f'/api/quotations/{quotation_id}', json={'title': 'Relaunch v2'})
        assert response.status_code == 200
        assert response.get_json()['title'] == 'Relaunch v2'

    def test_validate(self, authenticated_client, quotation_id):
        response = authenticated_client.post(f'/api/quotations/{quotation_id}/validate')
        assert response.get_json() == {'is_valid': True, 'errors': []}

    def test_duplicate(self, authenticated_client, quotation_id):
        response = authenticated_client.post(f'/api/quotations/{quotation_id}/duplicate')

        assert response.status_code == 201
        assert response.get_json()['source_quotation_id'] == quotation_id

    def test_pdf(self, authenticated_client, quotation_id):
        response = authenticated_client.get(f'/api/quotations/{quotation_id}/pdf')

        assert response.status_code == 200
        assert response.mimetype == 'application/pdf'
        assert response.data.startswith(b'%PDF')

    def test_history(self, authenticated_client, quotation_id):
        authenticated_client.post(f'/api/quotations/{quotation_id}/transitions', json={'status': 'sent'})

        response = authenticated_client.get(f'/api/quotations/{quotation_id}/history')

        assert response.status_code == 200
        actions = [entry['action'] for entry in response.get_json()['history']]
        assert actions == ['QUOTATION_STATUS_CHANGED', 'QUOTATION_CREATED']

    def test_history_of_missing_quotation(self, authenticated_client):
        assert authenticated_client.get('/api/quotations/9999/history').status_code == 404


class TestNotificationsApi:

    def test_inbox_and_mark_read(self, authenticated_client, quotation_id):
        url = f'/api/quotations/{quotation_id}/transitions'
        authenticated_client.post(url, json={'status': 'sent'})
        authenticated_client.post(url, json={'status': 'viewed'})

        inbox = authenticated_client.get('/api/notifications?unread=1').get_json()['notifications']
        assert len(inbox) == 1
        assert inbox[0]['event'] == 'quotation_viewed'

        read = authenticated_client.post(f"/api/notifications/{inbox[0]['id']}/read")
        assert read.get_json()['read'] is True
        assert authenticated_client.get('/api/notifications?unread=1').get_json()['notifications'] == []

    def test_preferences(self, authenticated_client):
        prefs = authenticated_client.get('/api/notifications/preferences').get_json()
        assert prefs['channels']['in_app'] is True

        response = authenticated_client.put('/api/notifications/preferences', json={'channels': {'in_app': False}})
        assert response.status_code == 200
        assert response.get_json()['channels']['in_app'] is False

    def test_unknown_preference_key(self, authenticated_client):
        response = authenticated_client.put('/api/notifications/preferences', json={'channels': {'pager': True}})

        assert response.status_code == 400
        assert response.get_json()['error'] == 'UnknownPreferenceKey'

    def test_preference_section_must_be_object(self, authenticated_client):
        response = authenticated_client.put('/api/notifications/preferences', json={'channels': ['email']})

        assert response.status_code == 400
        assert response.get_json()['field'] == 'channels'


class TestQuotationTemplatesApi:

    @pytest.fixture
    def template_id(self, authenticated_client, items_data):
        response = authenticated_client.post('/api/quotation-templates', json={
            'name': 'Standard consulting', 'category': 'Consulting', 'default_items': items_data, 'valid_days': 14,
        })
        assert response.status_code == 201
        return response.get_json()['id']

    def test_create_list_and_get(self, authenticated_client, template_id):
        listing = authenticated_client.get('/api/quotation-templates?status=draft').get_json()['templates']
        assert [t['id'] for t in listing] == [template_id]

        detail = authenticated_client.get(f'/api/quotation-templates/{template_id}').get_json()
        assert detail['status'] == 'draft'
        assert detail['default_items'][0]['unit_price'] == '85.00'

        categories = authenticated_client.get('/api/quotation-templates/categories').get_json()
        assert categories == {'categories': ['Consulting']}

    def test_invalid_item(self, authenticated_client):
        response = authenticated_client.post('/api/quotation-templates', json={
            'name': 'Broken', 'default_items': [{'description': 'Bolts', 'quantity': 1, 'unit_price': 'NaN'}],
        })

        assert response.status_code == 400
        assert response.get_json()['error'] == 'InvalidLineItem'

    def test_use_requires_active_template(self, authenticated_client, template_id):
        response = authenticated_client.post(f'/api/quotation-templates/{template_id}/use')
        assert response.status_code == 409

        activated = authenticated_client.post(f'/api/quotation-templates/{template_id}/activate')
        assert activated.get_json()['status'] == 'active'

        response = authenticated_client.post(f'/api/quotation-templates/{template_id}/use', json={'title': 'Spring'})
        assert response.status_code == 201
        data = response.get_json()
        assert data['template_id'] == template_id
        assert data['title'] == 'Spring'
        assert data['grand_total'] == '1163.50'
        assert data['available_transitions'] == ['cancelled', 'sent']

        popular = authenticated_client.get('/api/quotation-templates/popular').get_json()['templates']
        assert popular[0]['usage_count'] == 1

    def test_patch_duplicate_version_archive_delete(self, authenticated_client, template_id):
        patched = authenticated_client.patch(f'/api/quotation-templates/{template_id}', json={'terms': 'Net 15'})
        assert patched.get_json()['terms'] == 'Net 15'

        copy = authenticated_client.post(f'/api/quotation-templates/{template_id}/duplicate')
        assert copy.status_code == 201
        assert copy.get_json()['visibility'] == 'private'

        version = authenticated_client.post(f'/api/quotation-templates/{template_id}/versions', json={'version': '2'})
        assert version.status_code == 201
        assert version.get_json()['parent_template_id'] == template_id
        again = authenticated_client.post(f'/api/quotation-templates/{template_id}/versions', json={'version': '2'})
        assert again.status_code == 409

        archived = authenticated_client.post(f'/api/quotation-templates/{template_id}/archive')
        assert archived.get_json()['status'] == 'archived'

        assert authenticated_client.delete(f'/api/quotation-templates/{template_id}').status_code == 200
        assert authenticated_client.get(f'/api/quotation-templates/{template_id}').status_code == 404

    def test_other_tenant_cannot_see_template(self, client, template_id, company2, owner2):
        with client.session_transaction() as sess:
            sess['user_id'] = owner2.id
            sess['company_id'] = company2.id

        assert client.get(f'/api/quotation-templates/{template_id}').status_code == 404
        assert client.post(f'/api/quotation-templates/{template_id}/use').status_code == 404
