"""
Response adapters for the upstream order API.

The upstream answers either with the entity itself or with the entity
wrapped as {"data": ...}. Each adapter accepts exactly those two shapes
and raises ResponseShapeError for anything else.
"""
from typing import Any, Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError

from storefront.exceptions import ResponseShapeError
from storefront.models import Store, User


class AuthTokenResponse(BaseModel):
    token: Optional[str] = None
    user: Optional[User] = None


def unwrap_data(payload: Any, endpoint: str) -> dict:
    if not isinstance(payload, dict):
        raise ResponseShapeError(endpoint, f"expected an object, got {type(payload).__name__}")
    if "data" in payload:
        data = payload["data"]
        if not isinstance(data, dict):
            raise ResponseShapeError(endpoint, "'data' is not an object")
        return data
    return payload


def parse_auth_response(payload: Any, endpoint: str = "auth") -> AuthTokenResponse:
    """Token from 'token' or 'accessToken', user from 'user', either at top level or under 'data'"""
    body = unwrap_data(payload, endpoint)
    token = body.get("token") or body.get("accessToken")
    if token is not None and not isinstance(token, str):
        raise ResponseShapeError(endpoint, "token is not a string")

    user = None
    if body.get("user") is not None:
        user = _validate_user(body["user"], endpoint)

    return AuthTokenResponse(token=token or None, user=user)


def parse_user(payload: Any, endpoint: str = "profile") -> User:
    return _validate_user(unwrap_data(payload, endpoint), endpoint)


def _validate_user(data: Any, endpoint: str) -> User:
    try:
        user = User.model_validate(data)
    except PydanticValidationError as e:
        raise ResponseShapeError(endpoint, f"invalid user: {e.error_count()} errors")
    if not (user.id or user.customer_id or user.phone):
        raise ResponseShapeError(endpoint, "user has no identifier")
    return user


def parse_store(payload: Any, endpoint: str = "store") -> Store:
    try:
        return Store.model_validate(unwrap_data(payload, endpoint))
    except PydanticValidationError as e:
        raise ResponseShapeError(endpoint, f"invalid store: {e.error_count()} errors")


def parse_order_id(payload: Any, endpoint: str = "order/place-order") -> str:
    body = unwrap_data(payload, endpoint)
    order_id = body.get("_id") or body.get("id")
    if not order_id:
        raise ResponseShapeError(endpoint, "order has no id")
    return str(order_id)
