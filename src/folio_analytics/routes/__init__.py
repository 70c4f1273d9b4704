"""
Analytics routes.

One router factory per surface: public collection, admin JSON API and the
Jinja2 dashboard.
"""

from .api import create_api_router
from .collect import create_collect_router
from .dashboard import create_dashboard_router

__all__ = ["create_api_router", "create_collect_router", "create_dashboard_router"]
