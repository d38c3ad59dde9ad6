"""Tests for plugin discovery."""

from unittest.mock import MagicMock, patch

from stackwright.plugins import (
    PROVIDER_GROUP,
    RESOURCE_TYPES_GROUP,
    discover_providers,
    discover_resource_type_dirs,
    list_plugins,
)


def _entry_point(name, loaded=None, error=None):
    ep = MagicMock()
    ep.name = name
    if error is not None:
        ep.load.side_effect = error
    else:
        ep.load.return_value = loaded
    return ep


class TestPluginDiscovery:
    def test_builtin_local_provider_registered(self):
        from stackwright.providers.local import LocalProvider

        providers = discover_providers()
        # present when the package is installed with its entry points
        if "local" in providers:
            assert providers["local"] is LocalProvider

    def test_discover_resource_type_dirs(self):
        assert isinstance(discover_resource_type_dirs(), dict)

    def test_groups_are_scanned_by_name(self):
        with patch("stackwright.plugins.entry_points", return_value=[]) as scan:
            discover_providers()
            discover_resource_type_dirs()
        assert [c.kwargs["group"] for c in scan.call_args_list] == [PROVIDER_GROUP, RESOURCE_TYPES_GROUP]

    def test_list_plugins_does_not_load(self):
        eps = [_entry_point("zeta"), _entry_point("alpha")]
        with patch("stackwright.plugins.entry_points", return_value=eps):
            result = list_plugins()
        assert result == {PROVIDER_GROUP: ["alpha", "zeta"], RESOURCE_TYPES_GROUP: ["alpha", "zeta"]}
        assert not any(ep.load.called for ep in eps)

    def test_group_names_correct(self):
        assert PROVIDER_GROUP == "stackwright.providers"
        assert RESOURCE_TYPES_GROUP == "stackwright.resource_types"


class TestBrokenPlugins:
    def test_failed_load_is_skipped(self):
        eps = [_entry_point("good", loaded="ok"), _entry_point("broken", error=ImportError("missing"))]
        with patch("stackwright.plugins.entry_points", return_value=eps):
            result = discover_providers()
        assert result == {"good": "ok"}
