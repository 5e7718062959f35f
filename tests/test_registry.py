import threading
from datetime import timedelta

import pytest

from donorsignal.enums import ModelStatus
from donorsignal.exceptions import ModelNotFoundError
from donorsignal.models import ModelRegistry

from conftest import NOW


def test_register_assigns_versions_per_type(registry, make_model):
    first = registry.register(make_model("a"))
    second = registry.register(make_model("b"))
    other = registry.register(make_model("c", type="lifetime_value", performance={"r2_score": 0.5}))

    assert first.version == "1.0.0"
    assert second.version == "2.0.0"
    assert other.version == "1.0.0"
    assert registry.get("b") is second
    assert len(registry) == 3


def test_get_unknown_returns_none(registry):
    assert registry.get("nope") is None


def test_active_by_type_is_most_recent_first(registry, make_model):
    registry.register(make_model("old", last_trained_at=NOW - timedelta(days=30)))
    registry.register(make_model("new", last_trained_at=NOW))
    registry.register(make_model("mid", last_trained_at=NOW - timedelta(days=10)))
    registry.register(make_model("gone", status="retired"))

    assert [m.id for m in registry.active_by_type("churn_risk")] == ["new", "mid", "old"]
    assert registry.active_by_type("upgrade_probability") == []


def test_set_status_swaps_in_new_object(registry, make_model):
    model = registry.register(make_model("a"))
    updated = registry.set_status("a", "needs_retraining")

    assert updated.status == ModelStatus.NEEDS_RETRAINING
    assert registry.get("a") is updated
    # Readers holding the old object keep a consistent view.
    assert model.status == ModelStatus.ACTIVE
    assert registry.active() == []


def test_write_paths_raise_for_unknown_ids(registry):
    with pytest.raises(ModelNotFoundError, match="nope"):
        registry.set_status("nope", "retired")
    with pytest.raises(LookupError):
        registry.retire("nope")


def test_supersede_retires_previous_active_models(registry, make_model):
    registry.register(make_model("a"))
    registry.register(make_model("b", type="lifetime_value", performance={"r2_score": 0.5}))
    registry.register(make_model("c"), supersede=True)

    assert registry.get("a").status == ModelStatus.RETIRED
    assert registry.get("b").status == ModelStatus.ACTIVE
    assert [m.id for m in registry.active_by_type("churn_risk")] == ["c"]


def test_concurrent_registration_is_serialized(make_model):
    registry = ModelRegistry()
    models = [make_model(f"m{i}") for i in range(50)]

    threads = [threading.Thread(target=registry.register, args=(m,)) for m in models]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(registry) == 50
    versions = {m.version for m in registry.all()}
    assert versions == {f"{n}.0.0" for n in range(1, 51)}
