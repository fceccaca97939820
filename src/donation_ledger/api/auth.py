from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer
from pydantic import ValidationError
from typing import Optional

from donation_ledger.api.schemas import CognitoUser
from donation_ledger.core.config import Settings, get_settings

security = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    token: Optional[str] = Depends(security)
) -> CognitoUser:
    # The API Gateway Cognito authorizer has already validated the token.
    auth = request.scope.get("aws.event", {}).get("requestContext", {}).get("authorizer", {})
    claims = auth.get("claims", {})

    if not claims:
        raise HTTPException(status_code=401, detail="Could not find user claims")

    try:
        user = CognitoUser(**claims)
    except ValidationError as e:
        raise HTTPException(
            status_code=401,
            detail=f"Invalid authentication credentials: {e.errors()[0]['msg']}"
        )

    if not user.email_verified:
        raise HTTPException(status_code=403, detail="Email not verified")

    return user


async def require_admin(
    user: CognitoUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings)
) -> CognitoUser:
    if settings.ADMIN_GROUP not in user.groups:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
