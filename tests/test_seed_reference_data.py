import importlib

from app.models.reference import City, Ward


def test_seed_creates_defaults(app):
    mod = importlib.import_module("scripts.seed_reference_data")

    summary = mod.seed_reference_data()

    assert summary["city"] == len(mod.DEFAULT_REFERENCE_DATA["city"])
    assert City.query.count() == len(mod.DEFAULT_REFERENCE_DATA["city"])


def test_seed_is_idempotent(app):
    mod = importlib.import_module("scripts.seed_reference_data")

    first = mod.seed_reference_data({"ward": ["Ward 1", "Ward 2"]})
    second = mod.seed_reference_data({"ward": ["ward 1", "Ward 2", "Ward 3"]})

    assert first == {"ward": 2}
    assert second == {"ward": 1}
    assert sorted(w.name for w in Ward.query.all()) == ["Ward 1", "Ward 2", "Ward 3"]
