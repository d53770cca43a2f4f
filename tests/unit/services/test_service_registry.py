"""
Tests for the lazy service registry
"""

from unittest.mock import Mock

import pytest

from services.registry import ServiceLifecycle, ServiceRegistry


class TestServiceRegistry:

    def test_singleton_is_created_once(self):
        registry = ServiceRegistry()
        factory = Mock(side_effect=lambda: object())
        registry.register_singleton('client', factory)

        assert registry.get('client') is registry.get('client')
        factory.assert_called_once_with()

    def test_transient_is_created_per_lookup(self):
        registry = ServiceRegistry()
        registry.register_transient('service', lambda: object())

        assert registry.get('service') is not registry.get('service')

    def test_dependencies_are_passed_as_keywords(self):
        registry = ServiceRegistry()
        registry.register('store', service='the-store')
        registry.register_transient('service', lambda store: ('service', store), dependencies=['store'])

        assert registry.get('service') == ('service', 'the-store')

    def test_unknown_service(self):
        with pytest.raises(ValueError):
            ServiceRegistry().get('missing')

    def test_registration_needs_instance_or_factory(self):
        with pytest.raises(ValueError):
            ServiceRegistry().register('empty')

    def test_circular_dependency_detected(self):
        registry = ServiceRegistry()
        registry.register_transient('a', lambda b: b, dependencies=['b'])
        registry.register_transient('b', lambda a: a, dependencies=['a'])

        with pytest.raises(RuntimeError) as exc_info:
            registry.get('a')
        assert 'a -> b -> a' in str(exc_info.value)

    def test_validate_dependencies(self):
        registry = ServiceRegistry()
        registry.register_transient('service', lambda store: store, dependencies=['store'])

        assert registry.validate_dependencies() == [
            "Service 'service' depends on unregistered service 'store'"
        ]

    def test_reset_service_rebuilds_singleton(self):
        registry = ServiceRegistry()
        registry.register('client', factory=lambda: object(), lifecycle=ServiceLifecycle.SINGLETON)
        first = registry.get('client')

        registry.reset_service('client')

        assert registry.get('client') is not first

    def test_list_services(self):
        registry = ServiceRegistry()
        registry.register('b', service=1)
        registry.register('a', service=2)

        assert registry.list_services() == ['a', 'b']
        assert registry.has('a')
        assert not registry.has('c')


def test_app_registry_is_consistent(app):
    assert app.services.validate_dependencies() == []
    for name in ['store', 'engagement', 'recurrence', 'billing_reconciliation',
                 'calendar', 'availability', 'setting', 'dispatcher']:
        assert app.services.get(name) is not None
    # No provider key in testing
    assert app.services.get('billing_client') is None
