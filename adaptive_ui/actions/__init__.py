from adaptive_ui.actions.catalog import ActionCatalog, normalize_descriptor, slugify
from adaptive_ui.actions.models import ActionDescriptor

__all__ = ["ActionCatalog", "ActionDescriptor", "normalize_descriptor", "slugify"]
