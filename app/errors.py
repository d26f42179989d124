# app/errors.py
# Role: Error taxonomy shared by the store, the ledger services and the routes.
#       Each error carries the HTTP status the JSON layer answers with.

"""
Errors raised by the finance ledger.

- Unauthenticated: credential missing or invalid; nothing was attempted
- NotFound:        entity missing or owned by someone else
- Invalid:         payload fails validation
- Conflict:        operation would break a structural invariant
- Unavailable:     store call failed or timed out (safe to retry)

Invalid, NotFound and Conflict are always raised before any mutating store call.
"""


class LedgerError(Exception):
    status_code = 500
    retriable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthenticated(LedgerError):
    status_code = 401


class NotFound(LedgerError):
    status_code = 404


class Invalid(LedgerError):
    status_code = 400


class Conflict(LedgerError):
    status_code = 409


class Unavailable(LedgerError):
    status_code = 503
    retriable = True
