from docpipe.auth.token import TokenPayload
from docpipe.auth.middleware import JWTDecoder, RoleChecker, get_current_user, require_admin
from docpipe.auth.worker import CallbackCaller, WorkerAuth, require_worker_or_admin
from docpipe.auth.dependencies import DB, AdminUser, CurrentUser, WorkerOrAdmin

__all__ = [
    "TokenPayload", "JWTDecoder", "RoleChecker", "get_current_user", "require_admin",
    "CallbackCaller", "WorkerAuth", "require_worker_or_admin",
    "DB", "AdminUser", "CurrentUser", "WorkerOrAdmin",
]
