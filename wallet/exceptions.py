"""
Custom exception classes and FastAPI exception handlers.

The service layer raises domain-specific errors (like InsufficientFundsError)
without importing HTTP concepts. The handler layer then translates these
into proper HTTP responses, so:
    - Service code is testable without HTTP
    - Error responses are consistent across all endpoints
    - Callers can tell "your request was invalid", "the recipient doesn't
      exist", "you don't have enough balance" and "something went wrong,
      try again" apart by `error_type`

Exception hierarchy:
    WalletError (base)
    ├── InvalidRequestError        — bad input, rejected before any I/O
    │   └── SelfTransferError      — sender and recipient are the same account
    ├── AccountNotFoundError       — sender or recipient missing
    ├── AccountAlreadyExistsError  — opening an account id that is taken
    ├── InsufficientFundsError     — debit would make the balance negative
    ├── TransferFailedError        — infrastructure failure; nothing was applied
    ├── DuplicateEmailError        — signing up with a registered email
    └── InvalidCredentialsError    — wrong email or password
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class WalletError(Exception):
    """Base exception for all wallet domain errors."""

    status_code: int = 400
    error_type: str = "wallet_error"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"detail": self.detail, "error_type": self.error_type}


# ---------------------------------------------------------------------------
# Domain exceptions
# ---------------------------------------------------------------------------

class InvalidRequestError(WalletError):
    """Raised when a request fails validation before touching the store."""

    status_code = 400
    error_type = "invalid_request"


class SelfTransferError(InvalidRequestError):
    """Raised when a transfer names the same account on both sides."""

    error_type = "self_transfer"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__("Cannot transfer money to yourself")


class AccountNotFoundError(WalletError):
    """
    Raised when a requested account does not exist.

    Attributes:
        account_id: The id that was looked up.
        role: "sender", "recipient" or None when the lookup isn't part of a transfer.
    """

    status_code = 404
    error_type = "account_not_found"

    def __init__(self, account_id: str, role: str | None = None):
        self.account_id = account_id
        self.role = role
        if role:
            super().__init__(f"{role.capitalize()} account {account_id} not found")
        else:
            super().__init__(f"Account {account_id} not found")


class AccountAlreadyExistsError(WalletError):
    """Raised when opening an account whose id is already taken."""

    status_code = 409
    error_type = "account_already_exists"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account {account_id} already exists")


class InsufficientFundsError(WalletError):
    """
    Raised when a debit would cause a negative balance.

    Attributes:
        account_id: The account that lacks sufficient funds.
        requested_cents: The amount the caller tried to debit.
        available_cents: The balance at the time of the attempt, if known.
    """

    status_code = 422  # The request was valid but business rules reject it
    error_type = "insufficient_funds"

    def __init__(
        self,
        account_id: str,
        requested_cents: int,
        available_cents: int | None = None,
    ):
        self.account_id = account_id
        self.requested_cents = requested_cents
        self.available_cents = available_cents
        if available_cents is None:
            super().__init__(f"Insufficient funds: requested {requested_cents} cents")
        else:
            super().__init__(
                f"Insufficient funds: requested {requested_cents} cents, "
                f"available {available_cents} cents"
            )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["requested_cents"] = self.requested_cents
        data["available_cents"] = self.available_cents
        return data


class TransferFailedError(WalletError):
    """
    Raised when the transfer's unit of work could not be committed.

    The whole unit of work was rolled back: the transfer did not happen and
    the caller may safely try again.
    """

    status_code = 503
    error_type = "transfer_failed"

    def __init__(self, detail: str = "Transfer failed. Please try again."):
        super().__init__(detail)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retryable"] = True
        return data


class DuplicateEmailError(WalletError):
    """Raised when attempting to register with an email that's already in use."""

    status_code = 409
    error_type = "duplicate_email"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email {email} is already registered")


class InvalidCredentialsError(WalletError):
    """Raised when sign-in credentials are incorrect."""

    status_code = 401
    error_type = "invalid_credentials"

    def __init__(self):
        super().__init__("Invalid email or password")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the domain exception handler with the FastAPI application.

    Every WalletError subclass carries its own HTTP status and serializes to
    a consistent JSON body: {"detail": "...", "error_type": "...", ...}

    This is called once in create_app().
    """

    @app.exception_handler(WalletError)
    async def wallet_error_handler(request: Request, exc: WalletError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
