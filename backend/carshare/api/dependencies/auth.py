# backend/carshare/api/dependencies/auth.py
"""
Current-user dependency.

Authentication itself lives in the identity gateway in front of this
service; it forwards the authenticated user id in ``X-User-Id``. Here the
id is resolved to a ``CurrentUser`` carrying the role stored on the user
row, and that object is passed explicitly into service calls.
"""

import logging
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from ...core.enums import RoleName
from ...core.exceptions import UnauthorizedException
from ...core.principal import CurrentUser
from ...repositories.factory import RepositoryFactory
from .database import get_db

logger = logging.getLogger(__name__)


def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> CurrentUser:
    if not x_user_id:
        raise UnauthorizedException(
            "Authentication required", code="UNAUTHENTICATED"
        ).to_http_exception()
    user = RepositoryFactory.create_user_repository(db).get_by_id(x_user_id)
    if user is None:
        logger.info("Unknown user id on request", extra={"user_id": x_user_id})
        raise UnauthorizedException("Unknown user", code="UNAUTHENTICATED").to_http_exception()
    return CurrentUser(user_id=user.id, role=RoleName(user.role))
