"""Tests for lazy top-level imports in the derepute package."""

import pytest

import derepute


class TestLazyImports:
    @pytest.mark.parametrize("name", sorted(derepute._LAZY_IMPORTS))
    def test_resolves(self, name: str) -> None:
        module_path, attr_name = derepute._LAZY_IMPORTS[name]
        module = __import__(module_path, fromlist=[attr_name])
        assert getattr(derepute, name) is getattr(module, attr_name)

    def test_all_matches_lazy_imports(self) -> None:
        assert set(derepute.__all__) == set(derepute._LAZY_IMPORTS)

    def test_dir(self) -> None:
        assert "RegistryStore" in dir(derepute)

    def test_unknown_attribute(self) -> None:
        with pytest.raises(AttributeError, match="no attribute"):
            derepute.DoesNotExist  # noqa: B018

    def test_version(self) -> None:
        assert isinstance(derepute.__version__, str)
