from fastapi import Request

from storefront.auth.services import AuthService


def get_auth_service(request: Request) -> AuthService:
    """The AuthService built during app startup."""
    return request.app.state.auth_service
