"""
Authentication provider abstractions.

An 'AuthProvider' integrates with a FastAPI application to identify the current
user on every request. Session issuance is handled elsewhere (an identity proxy
or a dedicated auth service); the toolkit only needs to turn a request into a
user id.

'HeaderAuthProvider' trusts an identity header set by an authenticating reverse
proxy in front of the API.
"""

from abc import ABC, abstractmethod

from fastapi import FastAPI, Request

from research_toolkit.errors import Unauthorized


class AuthProvider(ABC):
    """
    Abstract base class for authentication backends.

    Implementors must supply a FastAPI dependency that resolves to the current
    user ID ('get_current_user_id') and a setup hook that registers any routes
    and middleware the provider needs ('bind_to_app').
    """

    @abstractmethod
    def get_current_user_id(self, request: Request) -> str:
        """FastAPI dependency that returns the authenticated user's ID.

        Raise 'Unauthorized' if the request is not authenticated; the API maps it to 401.
        """
        pass

    def bind_to_app(self, app: FastAPI) -> None:
        """Register routes and middleware required by this provider."""
        return None


class HeaderAuthProvider(AuthProvider):
    def __init__(self, header_name: str = "X-User-Id") -> None:
        self.header_name = header_name

    def get_current_user_id(self, request: Request) -> str:
        user_id = request.headers.get(self.header_name, "").strip()
        if not user_id:
            raise Unauthorized(f"Missing {self.header_name} header")
        return user_id
