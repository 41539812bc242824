"""HTTP routers. Each factory returns an APIRouter that reads its collaborators from app.state."""

from adaptive_ui.api.generation_routes import build_core_router
from adaptive_ui.api.knowledge_routes import build_knowledge_router
from adaptive_ui.api.registry_routes import build_registry_router

__all__ = ["build_core_router", "build_knowledge_router", "build_registry_router"]
