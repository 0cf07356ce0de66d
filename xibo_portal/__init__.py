"""
Xibo Portal

Administrative front-end and proxy for a Xibo signage CMS. Layouts are
fetched from the upstream CMS on every view, composed into a scaled scene
model and edited through a checkout/draft/publish session.
"""

__version__ = '0.1.0'
