"""
Xibo CMS access for the portal.

Modules:
- xibo_client: HTTP session to the CMS API, holding the application token
  and sending requests with either that token or the caller's own
- collection_service: walks paginated CMS listings and keeps only the
  records the calling user owns
- layout_gateway: turns CMS layout records into LayoutDocuments and
  carries out checkout, publish and widget updates for the engine

Every error these modules raise derives from ServiceError. The Flask app
maps each subclass to a response status (see app._register_error_handlers),
so routes usually let them propagate:

    gateway = get_gateway()
    try:
        draft_id = gateway.checkout(layout_id)
    except XiboClientError as e:
        logger.warning(f"Checkout of layout {layout_id} failed ({e.status_code}): {e}")
        raise
"""


class ServiceError(Exception):
    """
    Failure while talking to the CMS or building the caller's context.

    Attributes:
        message: Human readable summary, returned to API clients
        details: Extra fields logged alongside the message
    """

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class XiboClientError(ServiceError):
    """
    The CMS answered with an error, or a request to it could not complete.

    Attributes:
        status_code: HTTP status returned by the CMS, None when no response arrived
        response_body: Raw body of the error response, used to detect
            checkout conflicts reported as 422
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code
        self.response_body = response_body


class XiboAuthenticationError(XiboClientError):
    """
    The CMS refused a token (401/403).

    Raised both for the portal's client-credentials grant and for a
    user's access token that has expired upstream. Answered with 401 so
    the UI sends the user back to login.
    """

    pass


class XiboTimeoutError(XiboClientError):
    """A CMS request exceeded XIBO_REQUEST_TIMEOUT. Answered with 504."""

    pass


class XiboConnectionError(XiboClientError):
    """
    No HTTP exchange with the CMS took place, for example a DNS failure
    or a refused connection. Answered with 502.
    """

    pass


class UserContextError(ServiceError):
    """
    The JWT identity lacks the Xibo token, or both the user id and the
    username, needed to act on the caller's behalf. Answered with 401.
    """

    pass


from xibo_portal.services.xibo_client import XiboClient
from xibo_portal.services.collection_service import CollectionService, UserContext
from xibo_portal.services.layout_gateway import XiboLayoutGateway

__all__ = [
    # Exception classes
    'ServiceError',
    'XiboClientError',
    'XiboAuthenticationError',
    'XiboTimeoutError',
    'XiboConnectionError',
    'UserContextError',
    # Service classes
    'XiboClient',
    'CollectionService',
    'UserContext',
    'XiboLayoutGateway',
]
