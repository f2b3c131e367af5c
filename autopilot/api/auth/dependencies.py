"""FastAPI dependencies resolving the caller of an automation endpoint."""
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError

from .jwt import verify_token, TokenData


# Bearer scheme; an absent header is handled in get_current_user
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)]
) -> TokenData:
    """
    Resolve the bearer token of a request into the calling principal.

    Raises:
        HTTPException: 401 when the header is absent or the token does not verify
    """
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise unauthorized

    try:
        return verify_token(credentials.credentials)
    except JWTError:
        raise unauthorized


def require_scopes(*required_scopes: str):
    """
    Build a dependency that admits only tokens carrying every given scope.

    Processing automations needs ``automations:run``; creating them needs
    ``write``. The check runs before the endpoint body, so a caller without
    the scope never reaches the store.
    """
    async def scope_checker(
        token_data: Annotated[TokenData, Depends(get_current_user)]
    ) -> TokenData:
        missing = set(required_scopes) - set(token_data.scopes)
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scopes: {', '.join(sorted(missing))}",
            )
        return token_data

    return scope_checker
