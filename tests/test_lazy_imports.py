"""Tests for wren.__init__: lazy import registry covers all public names."""

import pytest

import wren


@pytest.mark.parametrize("name", wren.__all__)
def test_all_names_resolve(name: str) -> None:
    """Every name in __all__ must resolve via __getattr__ without error."""
    assert getattr(wren, name) is not None, f"wren.{name} resolved to None"


def test_registry_matches_all() -> None:
    assert set(wren.__all__) == set(wren._LAZY_IMPORTS)


def test_unknown_name_raises_attribute_error() -> None:
    with pytest.raises(AttributeError, match="no attribute"):
        wren.__getattr__("ThisDoesNotExist")
