"""HTTP surfaces: master registry, per-node API and the dashboard bundle."""
from inframon.api.registry_api import create_registry_app
from inframon.api.node_api import create_node_app
from inframon.api.frontend import create_frontend_app

__all__ = ["create_registry_app", "create_node_app", "create_frontend_app"]
