"""
Callback authentication — processing worker OR admin.

The document-processing worker has no user session. It presents the shared
secret as a bearer token:

    Authorization: Bearer <processor_api_key>

Any other bearer is verified as an admin JWT, so operators can replay a
callback by hand. The secret is read once from settings at construction and
compared in constant time; an empty secret disables the worker path.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials

from docpipe.auth.middleware import RoleChecker, unauthorized, bearer_scheme, require_admin
from docpipe.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallbackCaller:
    kind:    str    # worker | admin
    subject: str


class WorkerAuth:

    def __init__(
        self,
        api_key: str | None         = None,
        admin:   RoleChecker | None = None,
    ) -> None:
        self._api_key = (api_key if api_key is not None else settings.processor_api_key).encode()
        self._admin   = admin or require_admin

    def is_worker_secret(self, token: str) -> bool:
        return bool(self._api_key) and hmac.compare_digest(token.encode(), self._api_key)

    async def __call__(
        self,
        request:     Request,
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    ) -> CallbackCaller:
        if credentials is None:
            raise unauthorized("Authentication required. Provide a valid Bearer token.")

        if self.is_worker_secret(credentials.credentials):
            return CallbackCaller(kind="worker", subject="processing-worker")

        user = await self._admin(request, credentials)
        logger.info("Callback invoked by admin | user=%s path=%s", user.sub, request.url.path)
        return CallbackCaller(kind="admin", subject=user.sub)


require_worker_or_admin = WorkerAuth()
