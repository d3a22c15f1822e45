"""
core/errors.py -- Application error taxonomy.

Every failure a client can observe maps to exactly one AppError subclass. The
HTTP layer (api/main.py) renders them into the uniform error envelope; the
store layer translates storage-specific failures (IntegrityError and friends)
into these classes at its boundary so upper layers never see them.

  ValidationError      400  malformed or missing input
  ForeignKeyViolation  400  dangling or still-referenced province code
  Unauthorized         401  missing / invalid / expired token, bad credentials
  Forbidden            403  role not in the route's allow-list
  NotFound             404  no such entity
  Conflict             409  duplicate unique field
  TooManyRequests      429  rate limit exceeded

Layer rule: core/ is the kernel -- no imports from api/, auth/, geo/, cache/.
"""

from __future__ import annotations

from typing import Any, Optional


class AppError(Exception):
    """Base class for errors that carry their own HTTP status and error code."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    message: str = "Erro interno do servidor"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None, details: Any = None) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = details
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Dados de entrada inválidos"


class ForeignKeyViolation(AppError):
    status_code = 400
    code = "FOREIGN_KEY_VIOLATION"
    message = "Violação de chave estrangeira"


class Unauthorized(AppError):
    """401. The code distinguishes the sub-reason for token failures.

    MISSING_TOKEN, INVALID_TOKEN, EXPIRED_TOKEN, INACTIVE_USER and
    INVALID_CREDENTIALS are the codes in use.
    """

    status_code = 401
    code = "UNAUTHORIZED"
    message = "Não autorizado"


class Forbidden(AppError):
    status_code = 403
    code = "INSUFFICIENT_ROLE"
    message = "Acesso negado. Permissões insuficientes"


class NotFound(AppError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Recurso não encontrado"


class Conflict(AppError):
    status_code = 409
    code = "DUPLICATE_ENTRY"
    message = "Registro duplicado encontrado"


class TooManyRequests(AppError):
    status_code = 429
    code = "TOO_MANY_REQUESTS"
    message = "Muitas requisições. Tente novamente em alguns minutos."
