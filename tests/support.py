from __future__ import annotations

import uuid
from typing import Dict, Optional
from unittest import IsolatedAsyncioTestCase

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from school_meals.config import Settings
from school_meals.main import create_app
from school_meals.models import Base, Profile, Role
from school_meals.providers.supabase import AuthProviderError, AuthSession, AuthUser


def make_settings(**overrides) -> Settings:
    values = dict(
        supabase_url="https://project.supabase.test",
        supabase_anon_key="anon-key",
        database_url="sqlite+aiosqlite:///:memory:",
        metrics_enabled=False,
        log_json=False,
        log_level="WARNING",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeAuthClient:
    """In-memory stand-in for the hosted auth provider."""

    def __init__(self) -> None:
        self.accounts: Dict[str, dict] = {}
        self.tokens: Dict[str, AuthUser] = {}
        self.signed_out: list[str] = []
        self.unreachable = False

    def _check_reachable(self) -> None:
        if self.unreachable:
            raise httpx.ConnectError("auth provider unreachable")

    async def sign_up(self, email: str, password: str, metadata: Optional[dict] = None) -> AuthUser:
        self._check_reachable()
        if email in self.accounts:
            raise AuthProviderError("User already registered", status_code=422)
        user = AuthUser(id=str(uuid.uuid4()), email=email, metadata=metadata or {})
        self.accounts[email] = {"password": password, "user": user}
        return user

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        self._check_reachable()
        account = self.accounts.get(email)
        if not account or account["password"] != password:
            raise AuthProviderError("Invalid login credentials", status_code=400)
        token = uuid.uuid4().hex
        self.tokens[token] = account["user"]
        return AuthSession(user=account["user"], access_token=token, expires_at=1_900_000_000)

    async def get_user(self, access_token: str) -> AuthUser:
        self._check_reachable()
        user = self.tokens.get(access_token)
        if user is None:
            raise AuthProviderError("invalid JWT", status_code=401)
        return user

    async def sign_out(self, access_token: str) -> None:
        self._check_reachable()
        if access_token not in self.tokens:
            raise AuthProviderError("Session not found", status_code=403)
        self.signed_out.append(access_token)
        del self.tokens[access_token]

    def issue_token(self, user: AuthUser) -> str:
        token = uuid.uuid4().hex
        self.tokens[token] = user
        return token


class ApiTestCase(IsolatedAsyncioTestCase):
    settings_overrides: dict = {}

    async def asyncSetUp(self):
        self.engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            future=True,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.Session = async_sessionmaker(self.engine, expire_on_commit=False)
        self.auth = FakeAuthClient()
        self.app = create_app(
            make_settings(**self.settings_overrides),
            auth_client=self.auth,
            session_factory=self.Session,
        )
        self.client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=self.app, raise_app_exceptions=False),
            base_url="http://test",
        )

    async def asyncTearDown(self):
        await self.client.aclose()
        await self.engine.dispose()

    async def create_user(
        self,
        email: str,
        *,
        role: str = Role.PARENT,
        children: Optional[list] = None,
        with_profile: bool = True,
    ) -> tuple[AuthUser, Dict[str, str]]:
        """Create a provider account (and profile row) and return auth headers for it."""
        user = await self.auth.sign_up(email, "Secret123!")
        if with_profile:
            async with self.Session() as session:
                session.add(
                    Profile(
                        id=user.id,
                        email=email,
                        first_name="Test",
                        last_name="User",
                        role=role,
                        children=children or [],
                    )
                )
                await session.commit()
        token = self.auth.issue_token(user)
        return user, {"Authorization": f"Bearer {token}"}
