"""
auth/service.py -- Authentication flows: login, refresh, logout, and account recovery.

AuthService composes the auth components; it owns no state of its own.

  login    lock check -> verify password (dummy verify if the email is
           unknown) -> record attempt -> mint pair with current permissions
           -> persist refresh digest -> stamp last_login
  refresh  verify refresh JWT -> live lookup -> re-read permissions -> mint
           -> rotate (conditional revoke of the old digest + insert of the
           new one, one transaction)
  logout   revoke one refresh token; logout_all revokes every refresh token
           of the account and drops its sessions

Expected failures come back as values: LoginResult.failure carries the
ErrorCode and the convenience wrappers (login, refresh) return None. Only
infrastructure failures (StoreUnavailable, CredentialFormatError) raise.

Refresh token reuse:
  A correctly signed refresh token whose record exists but is already revoked
  has been used before. With reuse_revokes_all (default) that revokes every
  refresh token of the account and clears its sessions. A rotation that loses
  a concurrent race is reported as TOKEN_REVOKED but does not trigger this.

Enumeration:
  Unknown email and wrong password give the same failure, and forgot_password
  behaves identically whether or not the address exists.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.gate import PermissionChecker
from auth.lockout import LoginAttemptGuard
from auth.models import Account, Identity, TokenPair
from auth.notify import LogNotifier, Notifier
from auth.passwords import PasswordHasher
from auth.sessions import SessionCache
from auth.store import AccountStore
from auth.token_store import TokenStore
from auth.tokens import TokenIssuer
from core.errors import AuthFailure, ErrorCode, TokenExpired, TokenInvalid

logger = logging.getLogger("warden.auth")


@dataclass(frozen=True)
class LoginResult:
    tokens: Optional[TokenPair] = None
    failure: Optional[AuthFailure] = None

    @classmethod
    def fail(cls, code: ErrorCode) -> LoginResult:
        return cls(failure=AuthFailure(code))


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    def __init__(
        self,
        accounts: AccountStore,
        tokens: TokenStore,
        issuer: TokenIssuer,
        hasher: PasswordHasher,
        checker: PermissionChecker,
        sessions: SessionCache,
        guard: LoginAttemptGuard,
        notifier: Optional[Notifier] = None,
        *,
        reuse_revokes_all: bool = True,
    ) -> None:
        self.accounts = accounts
        self.tokens = tokens
        self.issuer = issuer
        self.hasher = hasher
        self.checker = checker
        self.sessions = sessions
        self.guard = guard
        self.notifier = notifier or LogNotifier()
        self.reuse_revokes_all = reuse_revokes_all

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def attempt_login(
        self,
        email: str,
        password: str,
        device: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> LoginResult:
        email = normalize_email(email)
        if self.guard.is_locked(email, origin):
            logger.info("Login refused for locked %s", email)
            return LoginResult.fail(ErrorCode.ACCOUNT_LOCKED)

        account = self.accounts.get_by_email(email)
        if account is None:
            self.hasher.verify_dummy(password)
            self.guard.record_attempt(email, origin, success=False)
            return LoginResult.fail(ErrorCode.INVALID_CREDENTIALS)
        if not self.hasher.verify(password, account.password_digest):
            self.guard.record_attempt(email, origin, success=False)
            return LoginResult.fail(ErrorCode.INVALID_CREDENTIALS)

        self.guard.record_attempt(email, origin, success=True)
        pair = self._mint(account)
        self.tokens.save_refresh(account.id, pair.refresh_token, device, origin)
        self.accounts.update_last_login(account.id)
        logger.info("Account %s logged in", account.id)
        return LoginResult(tokens=pair)

    def login(
        self,
        email: str,
        password: str,
        device: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> Optional[TokenPair]:
        return self.attempt_login(email, password, device, origin).tokens

    def _mint(self, account: Account) -> TokenPair:
        permissions = self.checker.account_permissions(account.id)
        return self.issuer.issue(Identity(account_id=account.id, email=account.email, permissions=permissions))

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def attempt_refresh(self, refresh_token: str) -> LoginResult:
        try:
            claims = self.issuer.verify_refresh(refresh_token)
        except TokenExpired:
            return LoginResult.fail(ErrorCode.TOKEN_EXPIRED)
        except TokenInvalid:
            return LoginResult.fail(ErrorCode.TOKEN_INVALID)

        record = self.tokens.find_live_refresh(refresh_token)
        if record is None:
            known = self.tokens.find_refresh(refresh_token)
            if known is not None and known.is_revoked and known.account_id == claims.account_id:
                self._on_reuse(claims.account_id)
                return LoginResult.fail(ErrorCode.TOKEN_REVOKED)
            return LoginResult.fail(ErrorCode.TOKEN_INVALID)
        if record.account_id != claims.account_id:
            return LoginResult.fail(ErrorCode.TOKEN_INVALID)

        account = self.accounts.get_by_id(claims.account_id)
        if account is None:
            return LoginResult.fail(ErrorCode.TOKEN_INVALID)

        pair = self._mint(account)
        rotated = self.tokens.rotate(
            refresh_token,
            pair.refresh_token,
            account.id,
            record.device_info,
            record.ip_address,
        )
        if not rotated:
            logger.info("Refresh token of account %s was rotated concurrently", account.id)
            return LoginResult.fail(ErrorCode.TOKEN_REVOKED)
        return LoginResult(tokens=pair)

    def refresh(self, refresh_token: str) -> Optional[TokenPair]:
        return self.attempt_refresh(refresh_token).tokens

    def _on_reuse(self, account_id: int) -> None:
        if not self.reuse_revokes_all:
            logger.warning("Revoked refresh token presented again for account %s", account_id)
            return
        logger.warning("Revoked refresh token presented again for account %s; revoking all sessions", account_id)
        self.logout_all(account_id)

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, refresh_token: str) -> bool:
        """Revoke one refresh token. True if it was known, even if already revoked."""
        return self.tokens.revoke(refresh_token)

    def logout_all(self, account_id: int) -> int:
        """Revoke every refresh token and session of account_id. Returns tokens revoked."""
        revoked = self.tokens.revoke_all(account_id)
        self.sessions.delete_all(account_id)
        return revoked

    # ------------------------------------------------------------------
    # Registration and verification
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Optional[int]:
        """Create an unverified account and send a verification token.

        Returns the new account id, or None if the email is already taken.
        """
        email = normalize_email(email)
        account = Account(
            email=email,
            password_digest=self.hasher.hash(password),
            first_name=first_name,
            last_name=last_name,
        )
        try:
            account_id = self.accounts.create_account(account)
        except IntegrityError:
            return None
        raw = self.tokens.create_email_verification(account_id)
        self.notifier.send_verification(email, raw, first_name)
        logger.info("Registered account %s", account_id)
        return account_id

    def verify_email(self, token: str) -> bool:
        account_id = self.tokens.consume_email_verification(token)
        if account_id is None:
            return False
        self.accounts.mark_verified(account_id)
        account = self.accounts.get_by_id(account_id)
        if account is not None:
            self.notifier.send_welcome(account.email, account.first_name)
        return True

    def resend_verification(self, email: str) -> None:
        """Send a fresh verification token. Silent for unknown or already verified addresses."""
        account = self.accounts.get_by_email(normalize_email(email))
        if account is None or account.is_verified:
            return
        raw = self.tokens.create_email_verification(account.id)
        self.notifier.send_verification(account.email, raw, account.first_name)

    # ------------------------------------------------------------------
    # Password recovery and change
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> None:
        """Issue a reset token if the account exists. Same outcome either way."""
        account = self.accounts.get_by_email(normalize_email(email))
        if account is None:
            return
        raw = self.tokens.create_password_reset(account.id)
        self.notifier.send_password_reset(account.email, raw, account.first_name)

    def reset_password(self, token: str, new_password: str, origin: Optional[str] = None) -> bool:
        """Consume a reset token, set the new password, and end every session.

        False if the token is unknown, expired, or already used.
        """
        account_id = self.tokens.consume_password_reset(token)
        if account_id is None:
            return False
        self.accounts.update_password(account_id, self.hasher.hash(new_password))
        self.logout_all(account_id)
        account = self.accounts.get_by_id(account_id)
        if account is not None:
            self.notifier.send_password_changed(account.email, account.first_name, origin)
        logger.info("Password reset for account %s", account_id)
        return True

    def change_password(
        self,
        account_id: int,
        current_password: str,
        new_password: str,
        origin: Optional[str] = None,
    ) -> Optional[AuthFailure]:
        """Change a password after re-checking the current one.

        Returns None on success, INVALID_CREDENTIALS if the current password
        is wrong or NOT_FOUND if the account is gone. Other devices are logged
        out.
        """
        account = self.accounts.get_by_id(account_id)
        if account is None:
            return AuthFailure(ErrorCode.NOT_FOUND)
        if not self.hasher.verify(current_password, account.password_digest):
            return AuthFailure(ErrorCode.INVALID_CREDENTIALS)
        self.accounts.update_password(account_id, self.hasher.hash(new_password))
        self.logout_all(account_id)
        self.notifier.send_password_changed(account.email, account.first_name, origin)
        return None
