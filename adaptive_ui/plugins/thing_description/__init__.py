from adaptive_ui.plugins.thing_description.provider import ThingDescriptionActionProvider

__all__ = ["ThingDescriptionActionProvider"]
