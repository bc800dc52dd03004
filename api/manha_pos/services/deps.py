from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from manha_pos.core.errors import AuthError
from manha_pos.services.context import PosContext
from manha_pos.services.terminal import Terminal

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/anonymous")


def get_context(request: Request) -> PosContext:
    setup_error = getattr(request.app.state, "setup_error", None)
    if setup_error:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=setup_error)
    return request.app.state.context


def get_terminal(
    token: str = Depends(oauth2_scheme),
    context: PosContext = Depends(get_context),
) -> Terminal:
    try:
        session = context.auth.verify(token)
    except AuthError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication token")

    return context.terminal(session.uid, session.expires_at)
