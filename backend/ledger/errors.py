"""
errors.py — AppError base class and error code registry.

Every error returned by the GroupLedger API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Error kinds and their codes:
  InvalidAmount   → INVALID_AMOUNT        (400)
  InvalidParties  → INVALID_PARTIES       (422)
  NotFound        → *_NOT_FOUND           (404)
  StorageError    → STORAGE_ERROR         (503)
  NotAuthorized   → FORBIDDEN             (403)

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).
  - Nothing in the core retries. Every failure is surfaced to the caller with
    its specific code so the boundary layer can map it to a response.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT             = "INVALID_AMOUNT"       # non-positive or malformed
    INVALID_STATUS             = "INVALID_STATUS"
    DUPLICATE_SPLIT_USER       = "DUPLICATE_SPLIT_USER"
    SPLIT_INPUT_CONFLICT       = "SPLIT_INPUT_CONFLICT"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    SETTLEMENT_NOT_FOUND       = "SETTLEMENT_NOT_FOUND"

    # ── Business Rule Violations (422) ────────────────────────────────────
    INVALID_PARTIES            = "INVALID_PARTIES"      # self-payment or non-member
    SPLIT_SUM_MISMATCH         = "SPLIT_SUM_MISMATCH"   # splits off by more than 0.01

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not a member of the group
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors ──────────────────────────────────────────────────────
    STORAGE_ERROR              = "STORAGE_ERROR"          # 503
    INTERNAL_ERROR             = "INTERNAL_ERROR"         # 500


# ── Shared raisers ─────────────────────────────────────────────────────────
# Every service needs the same 403/404 shapes; building them here keeps the
# messages identical across modules.

def forbidden(group_id: int) -> AppError:
    return AppError(
        ErrorCode.FORBIDDEN,
        f"You are not a member of group {group_id}.",
        403,
    )


def group_not_found(group_id: int) -> AppError:
    return AppError(
        ErrorCode.GROUP_NOT_FOUND,
        f"Group {group_id} does not exist.",
        404,
    )


def storage_error(operation: str) -> AppError:
    return AppError(
        ErrorCode.STORAGE_ERROR,
        f"The ledger store failed while trying to {operation}. Please retry the request.",
        503,
    )
