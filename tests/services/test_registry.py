import pytest

from webhook_relay.core.errors import BindingNotFoundError, StorageError
from webhook_relay.models import Administrator, Server
from webhook_relay.services.health import MAX_CONSECUTIVE_FAILURES
from webhook_relay.services.registry import AdminIdentity, RegistryStore


def test_bind_creates_active_binding_with_server_and_admin(
    registry: RegistryStore, admin: AdminIdentity, endpoint_url: str
):
    binding = registry.bind("200", endpoint_url, "100", admin, server_name="Guild")

    assert binding.channel_id == "200"
    assert binding.endpoint_url == endpoint_url
    assert binding.server_id == "100"
    assert binding.is_active is True
    assert binding.failure_count == 0
    assert binding.accept_automated_origin is False
    assert binding.registered_by == admin.user_id

    with registry.session_factory() as db:
        server = db.get(Server, "100")
        stored_admin = db.get(Administrator, admin.user_id)
    assert server.name == "Guild"
    assert server.added_by == admin.user_id
    assert stored_admin.display_label == admin.display_label
    assert stored_admin.interaction_count == 1


def test_rebind_overwrites_and_reactivates(
    registry: RegistryStore, admin: AdminIdentity, endpoint_url: str
):
    registry.bind("200", endpoint_url, "100", admin)
    for _ in range(MAX_CONSECUTIVE_FAILURES):
        registry.record_failure("200", "HTTP 404: Not Found", counts_toward_limit=True)
    assert registry.lookup_active("200") is None

    rebound = registry.bind("200", "https://new.example.com/hook", "100", admin)

    assert rebound.is_active is True
    assert rebound.failure_count == 0
    assert rebound.last_failure_at is None
    assert rebound.disabled_reason is None
    assert rebound.endpoint_url == "https://new.example.com/hook"
    assert registry.stats().binding_count == 1


def test_rebind_keeps_automated_origin_flag(
    registry: RegistryStore, admin: AdminIdentity, endpoint_url: str
):
    registry.bind("200", endpoint_url, "100", admin)
    assert registry.toggle_automated_origin("200") is True

    rebound = registry.bind("200", endpoint_url, "100", admin)

    assert rebound.accept_automated_origin is True


def test_rebind_without_admin_keeps_original_registrant(
    registry: RegistryStore, admin: AdminIdentity, endpoint_url: str
):
    registry.bind("200", endpoint_url, "100", admin)

    rebound = registry.bind("200", endpoint_url, "100")

    assert rebound.registered_by == admin.user_id


def test_admin_interaction_count_grows(
    registry: RegistryStore, admin: AdminIdentity, endpoint_url: str
):
    registry.bind("200", endpoint_url, "100", admin)
    registry.bind("201", endpoint_url, "100", admin)
    registry.store_server("100", "Renamed", admin)

    with registry.session_factory() as db:
        stored = db.get(Administrator, admin.user_id)
        server = db.get(Server, "100")
    assert stored.interaction_count == 3
    assert server.name == "Renamed"


def test_unbind_removes_binding(registry: RegistryStore, endpoint_url: str):
    registry.bind("200", endpoint_url, "100")

    removed = registry.unbind("200")

    assert removed.channel_id == "200"
    assert registry.lookup_any("200") is None


def test_unbind_unknown_channel_raises(registry: RegistryStore):
    with pytest.raises(BindingNotFoundError) as excinfo:
        registry.unbind("404")
    assert excinfo.value.channel_id == "404"


def test_lookup_active_ignores_disabled(registry: RegistryStore, endpoint_url: str):
    registry.bind("200", endpoint_url, "100")
    for _ in range(MAX_CONSECUTIVE_FAILURES):
        registry.record_failure("200", "HTTP 410: Gone", counts_toward_limit=True)

    assert registry.lookup_active("200") is None
    disabled = registry.lookup_any("200")
    assert disabled is not None
    assert disabled.is_active is False


def test_list_for_server_newest_first(registry: RegistryStore, endpoint_url: str):
    registry.bind("200", endpoint_url, "100")
    registry.bind("201", endpoint_url, "100")
    registry.bind("300", endpoint_url, "999")

    channels = [binding.channel_id for binding in registry.list_for_server("100")]

    assert channels == ["201", "200"]
    assert registry.list_for_server("missing") == []


def test_toggle_automated_origin_twice_restores_value(
    registry: RegistryStore, endpoint_url: str
):
    registry.bind("200", endpoint_url, "100")

    assert registry.toggle_automated_origin("200") is True
    assert registry.toggle_automated_origin("200") is False
    assert registry.lookup_any("200").accept_automated_origin is False


def test_toggle_unbound_channel_returns_none(registry: RegistryStore):
    assert registry.toggle_automated_origin("404") is None


def test_record_failure_increments_until_disabled(registry: RegistryStore, endpoint_url: str):
    registry.bind("200", endpoint_url, "100")

    records = [
        registry.record_failure("200", "HTTP 404: Not Found", counts_toward_limit=True)
        for _ in range(MAX_CONSECUTIVE_FAILURES)
    ]

    assert [record.failure_count for record in records] == [1, 2, 3, 4, 5]
    assert [record.tripped for record in records] == [False, False, False, False, True]
    binding = registry.lookup_any("200")
    assert binding.is_active is False
    assert "5" in binding.disabled_reason
    assert "HTTP 404: Not Found" in binding.disabled_reason
    assert binding.last_failure_at is not None


def test_failure_after_disable_does_not_trip_again(registry: RegistryStore, endpoint_url: str):
    registry.bind("200", endpoint_url, "100")
    for _ in range(MAX_CONSECUTIVE_FAILURES):
        registry.record_failure("200", "HTTP 404: Not Found", counts_toward_limit=True)

    record = registry.record_failure("200", "HTTP 404: Not Found", counts_toward_limit=True)

    assert record.tripped is False
    assert record.failure_count == MAX_CONSECUTIVE_FAILURES + 1


def test_non_counting_failure_only_touches_timestamp(registry: RegistryStore, endpoint_url: str):
    registry.bind("200", endpoint_url, "100")
    registry.record_failure("200", "HTTP 400: Bad Request", counts_toward_limit=True)

    record = registry.record_failure("200", "HTTP 503: Unavailable", counts_toward_limit=False)

    assert record.failure_count == 1
    assert record.tripped is False
    binding = registry.lookup_any("200")
    assert binding.failure_count == 1
    assert binding.last_failure_at is not None


def test_record_success_resets_counter(registry: RegistryStore, endpoint_url: str):
    registry.bind("200", endpoint_url, "100")
    for _ in range(3):
        registry.record_failure("200", "HTTP 400: Bad Request", counts_toward_limit=True)

    registry.record_success("200")

    binding = registry.lookup_any("200")
    assert binding.failure_count == 0
    assert binding.last_failure_at is None


def test_record_failure_unbound_channel_raises(registry: RegistryStore):
    with pytest.raises(BindingNotFoundError):
        registry.record_failure("404", "HTTP 400: Bad Request", counts_toward_limit=True)


def test_backfill_admin_fills_only_empty_references(
    registry: RegistryStore, admin: AdminIdentity, endpoint_url: str
):
    registry.bind("200", endpoint_url, "100")
    other = AdminIdentity(user_id="2002", display_label="other")

    assert registry.backfill_admin("200", "100", admin) is True
    assert registry.backfill_admin("200", "100", other) is False

    binding = registry.lookup_any("200")
    assert binding.registered_by == admin.user_id
    with registry.session_factory() as db:
        assert db.get(Server, "100").added_by == admin.user_id


def test_stats_and_is_empty(registry: RegistryStore, admin: AdminIdentity, endpoint_url: str):
    assert registry.is_empty() is True

    registry.bind("200", endpoint_url, "100", admin)
    registry.bind("201", endpoint_url, "101")
    for _ in range(MAX_CONSECUTIVE_FAILURES):
        registry.record_failure("201", "HTTP 404: Not Found", counts_toward_limit=True)

    stats = registry.stats()
    assert stats.binding_count == 2
    assert stats.active_binding_count == 1
    assert stats.server_count == 2
    assert stats.admin_count == 1
    assert registry.is_empty() is False


def test_database_errors_become_storage_errors(mocker, registry: RegistryStore):
    from sqlalchemy.exc import OperationalError

    mocker.patch.object(
        registry,
        "_session_factory",
        side_effect=OperationalError("SELECT 1", {}, Exception("database is locked")),
    )

    with pytest.raises(StorageError):
        registry.lookup_active("200")
