"""
Composed FastAPI Dependencies

Route handlers import auth and session aliases from here, never from
auth/middleware, auth/worker or db/session directly. This is the single
wiring point for request context.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from docpipe.auth.middleware import get_current_user, require_admin
from docpipe.auth.token import TokenPayload
from docpipe.auth.worker import CallbackCaller, require_worker_or_admin
from docpipe.db.session import get_db

DB            = Annotated[AsyncSession,   Depends(get_db)]
CurrentUser   = Annotated[TokenPayload,   Depends(get_current_user)]
AdminUser     = Annotated[TokenPayload,   Depends(require_admin)]
WorkerOrAdmin = Annotated[CallbackCaller, Depends(require_worker_or_admin)]
