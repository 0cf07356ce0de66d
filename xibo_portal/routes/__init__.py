"""
Xibo Portal Routes Package

Contains Flask blueprints for the API endpoints:
- layouts: layout viewing, checkout, publish and inline edits
- widgets: widget HTML passthrough for the iframe proxy
- regions: region preview passthrough
- media: shared media library listing
"""

from xibo_portal.routes.layouts import layouts_bp
from xibo_portal.routes.widgets import widgets_bp
from xibo_portal.routes.regions import regions_bp
from xibo_portal.routes.media import media_bp

__all__ = ['layouts_bp', 'widgets_bp', 'regions_bp', 'media_bp']
