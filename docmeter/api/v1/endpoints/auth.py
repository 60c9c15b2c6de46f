"""Endpoints for account signup, login and token validation."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from docmeter.api.deps import get_db_session
from docmeter.auth.jwt import create_access_token, require_auth
from docmeter.auth.passwords import hash_password, verify_password
from docmeter.auth.principal import AuthenticatedUser
from docmeter.core.exceptions import BadRequest, NotFound, Unauthorized
from docmeter.repositories.account_repo import AccountRepo
from docmeter.schemas.account import AccountRead, AuthResponse, LoginRequest, SignupRequest


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

MIN_PASSWORD_LENGTH = 6


@router.post("/signup", response_model=AuthResponse)
async def signup(body: SignupRequest, db: AsyncSession = Depends(get_db_session)):
    if not body.email or not body.password:
        raise BadRequest("Email and password are required")
    if len(body.password) < MIN_PASSWORD_LENGTH:
        raise BadRequest(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    repo = AccountRepo(db)
    if await repo.get_by_email(body.email) is not None:
        raise BadRequest("Email already registered")

    password_hash = await run_in_threadpool(hash_password, body.password)
    try:
        account = await repo.create(body.email, password_hash, body.name)
    except IntegrityError as exc:
        raise BadRequest("Email already registered") from exc

    logger.info(f"Account {account.id} created")
    token = create_access_token(account.id, account.email)
    return AuthResponse(token=token, user=AccountRead.model_validate(account))


@router.post("/login", response_model=AuthResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db_session)):
    if not body.email or not body.password:
        raise BadRequest("Email and password are required")

    account = await AccountRepo(db).get_by_email(body.email)
    if account is None:
        raise Unauthorized("Invalid email or password")

    valid = await run_in_threadpool(verify_password, body.password, account.password_hash)
    if not valid:
        raise Unauthorized("Invalid email or password")

    token = create_access_token(account.id, account.email)
    return AuthResponse(token=token, user=AccountRead.model_validate(account))


@router.get("/validate")
async def validate(
    user: AuthenticatedUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
):
    account = await AccountRepo(db).get(user.id)
    if account is None:
        raise NotFound("User not found")
    return {"valid": True, "user": AccountRead.model_validate(account)}
