"""
Xibo Portal Utility Functions.

This package contains helpers used across the HTTP surface:
- auth: JWT-based user context and per-request gateway construction
"""

from xibo_portal.utils.auth import get_gateway, get_user_context, xibo_user_required
