# app/deps.py
# Role: Shared request-level dependencies.
#       Hands out the Store, the identity provider and the services built on
#       top of them (all constructed once in main.create_app and kept on
#       app.state), and resolves the bearer token into an owner id.

"""
Shared dependencies for the finance ledger routes.
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.auth import IdentityProvider
from app.services.ledger import LedgerService
from app.services.loans import LoanService
from app.store import Store

# auto_error=False: missing credentials are reported through Unauthenticated
bearer_scheme = HTTPBearer(auto_error=False)


# -------------------------------------------------------------------
# Collaborators
# -------------------------------------------------------------------

def get_store(request: Request) -> Store:
    return request.app.state.store


def get_identity(request: Request) -> IdentityProvider:
    return request.app.state.identity


def get_ledger(store: Store = Depends(get_store)) -> LedgerService:
    """
    FastAPI dependency that provides the ledger service.

    Typical usage in routes:
        ledger: LedgerService = Depends(get_ledger)
    """
    return LedgerService(store)


def get_loans(store: Store = Depends(get_store)) -> LoanService:
    return LoanService(store)


# -------------------------------------------------------------------
# Authentication
# -------------------------------------------------------------------

def get_current_owner(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    identity: IdentityProvider = Depends(get_identity),
) -> str:
    """Resolve `Authorization: Bearer <token>` into the caller's owner id."""
    token = credentials.credentials if credentials else None
    return identity.resolve(token)
