from __future__ import annotations

from typing import Any, Dict, List

import pytest

from adaptive_ui.actions.catalog import ActionCatalog, build_action_id, normalize_descriptor, slugify
from adaptive_ui.plugins.action_provider import ActionProvider


class BrokenProvider(ActionProvider):
    def discover_actions(self, context: Dict[str, Any]) -> List[Dict[str, Any]]:
        raise RuntimeError("provider exploded")


class TestNormalization:
    def test_slugify(self) -> None:
        assert slugify("Dim Lights!") == "dim-lights"
        assert slugify("") == "action"
        assert slugify(None) == "action"

    def test_build_action_id_uses_label(self) -> None:
        assert build_action_id("thing-9", {"title": "Dim Lights"}) == "thing-9::dim-lights"
        assert build_action_id(None, {}, index=3) == "thing::action-3"

    def test_descriptor_without_name_or_forms_is_kept(self) -> None:
        action = normalize_descriptor({"title": "Dim Lights"}, {"thingId": "thing-9"}, "manual")

        assert action.id == "thing-9::dim-lights"
        assert action.name == "Dim Lights"
        assert action.transport is None
        assert action.provider == "manual"

    def test_transport_defaults_to_first_form(self) -> None:
        action = normalize_descriptor(
            {"id": "a", "forms": [{"url": "http://x/1", "op": "invokeaction"}, {"url": "http://x/2"}]},
            {"thingId": "t"},
            "manual",
        )

        assert action.transport["url"] == "http://x/1"
        assert action.forms[0]["op"] == ["invokeaction"]
        assert action.forms[1]["id"] == "form-1"


class TestActionCatalog:
    def test_refresh_catalogues_thing(self, catalog: ActionCatalog, lights_td: dict) -> None:
        actions = catalog.refresh_thing_actions("thing-1", lights_td)

        assert [a.id for a in actions] == ["thing-1::turnOn", "thing-1::turnOff", "thing-1::toggle"]
        assert all(a.provider == "thing-description-action-provider" for a in actions)
        assert catalog.get_action_by_id("thing-1::toggle").thing_id == "thing-1"
        assert catalog.action_count == 3

    def test_thing_id_falls_back_to_description(self, catalog: ActionCatalog, lights_td: dict) -> None:
        catalog.refresh_thing_actions(thing_description=lights_td)
        assert len(catalog.get_actions_for_thing("thing-1")) == 3

    def test_ensure_is_memoized(self, catalog: ActionCatalog, lights_td: dict) -> None:
        first = catalog.ensure_thing_actions("thing-1", lights_td)

        changed = dict(lights_td, actions={"blink": {"forms": []}})
        second = catalog.ensure_thing_actions("thing-1", changed)

        assert [a.id for a in second] == [a.id for a in first]

    def test_refresh_replaces_previous_set(self, catalog: ActionCatalog, lights_td: dict) -> None:
        catalog.refresh_thing_actions("thing-1", lights_td)

        changed = dict(lights_td, actions={"turnOn": lights_td["actions"]["turnOn"]})
        catalog.refresh_thing_actions("thing-1", changed)

        assert [a.id for a in catalog.get_actions_for_thing("thing-1")] == ["thing-1::turnOn"]
        assert catalog.get_action_by_id("thing-1::turnOff") is None

    def test_colliding_ids_from_other_things_get_suffix(self, catalog: ActionCatalog, lights_td: dict) -> None:
        catalog.refresh_thing_actions("thing-1", lights_td)
        other = {"id": "thing-2", "actions": {"on": {"id": "thing-1::turnOn", "forms": []}}}

        actions = catalog.refresh_thing_actions("thing-2", other)

        assert actions[0].id == "thing-1::turnOn-2"
        assert catalog.get_action_by_id("thing-1::turnOn").thing_id == "thing-1"
        assert catalog.get_action_by_id("thing-1::turnOn-2").thing_id == "thing-2"

    def test_without_description_nothing_is_saved(self, catalog: ActionCatalog) -> None:
        assert catalog.refresh_thing_actions("ghost", None) == []
        assert catalog.get_actions_for_thing("ghost") == []

    def test_failing_provider_is_skipped(self, catalog: ActionCatalog, lights_td: dict) -> None:
        broken = BrokenProvider("broken")
        broken.start()
        catalog.register_provider(broken)

        actions = catalog.refresh_thing_actions("thing-1", lights_td)

        assert len(actions) == 3
        assert catalog.list_providers() == ["thing-description-action-provider", "broken"]

    def test_register_provider_rejects_non_providers(self, catalog: ActionCatalog) -> None:
        with pytest.raises(TypeError):
            catalog.register_provider(object())  # type: ignore[arg-type]

    def test_lookups_tolerate_empty_ids(self, catalog: ActionCatalog) -> None:
        assert catalog.get_actions_for_thing(None) == []
        assert catalog.get_action_by_id("") is None
