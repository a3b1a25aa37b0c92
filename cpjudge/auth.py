"""Login state machine.

    ANONYMOUS --login()--> LOGGING_IN --username marker--> AUTHENTICATED
                               |
                               +--failure--> ANONYMOUS (InvalidCredentials / ChallengeRequired)

    AUTHENTICATED --expiry marker on a response--> EXPIRED --login()--> ...

Success is only recognised by a positive username marker on a page without
the login form; anything else is a failure.
"""
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from urllib.parse import urlparse

from cpjudge.errors import (
    AuthError,
    ChallengeRequired,
    CredentialsRequired,
    InvalidCredentials,
    SessionExpired,
    UnrecognizedLayout,
)
from cpjudge.session import AuthStatus

logger = logging.getLogger(__name__)


@dataclass
class Credentials:
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    token: str | None = field(default=None, repr=False)

    @classmethod
    def from_env(cls, platform) -> 'Credentials | None':
        """Read CPJUDGE_<PLATFORM>_USERNAME / _PASSWORD / _TOKEN."""
        prefix = f"CPJUDGE_{getattr(platform, 'value', platform).upper()}_"
        username = os.environ.get(prefix + 'USERNAME')
        password = os.environ.get(prefix + 'PASSWORD')
        token = os.environ.get(prefix + 'TOKEN')
        if not (username or password or token):
            return None
        return cls(username=username, password=password, token=token)


class Authenticator:
    def __init__(self, session, client, scraper, store=None, credentials: Credentials | None = None):
        self.session = session
        self.client = client
        self.scraper = scraper
        self.store = store
        self.credentials = credentials
        self.relogin_attempts = 0
        self._relogin_budget = None
        self.logger = logging.getLogger(f'scraper.{session.platform.value}')

    @property
    def status(self) -> AuthStatus:
        return self.session.status

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def login(self, credentials: Credentials | None = None):
        """Run the login transition; returns the authenticated Session."""
        credentials = credentials or self.credentials
        if credentials is None:
            raise CredentialsRequired(
                'login required but no credentials were supplied',
                platform=self.session.platform,
            )
        self.credentials = credentials

        self.session.status = AuthStatus.LOGGING_IN
        try:
            if self.scraper.auth.token_cookie:
                username = self._login_with_token(credentials)
            else:
                username = self._login_with_form(credentials)
        except Exception:
            self.session.status = AuthStatus.ANONYMOUS
            self.session.username = None
            raise

        self.session.status = AuthStatus.AUTHENTICATED
        self.session.username = username
        self.session.unverified = False
        self.logger.info(f"Logged in as {username}")
        if self.store is not None:
            self.store.save(self.session)
        return self.session

    def _login_with_form(self, credentials: Credentials) -> str:
        profile = self.scraper.auth
        if not credentials.username or credentials.password is None:
            raise CredentialsRequired(
                'username and password are required', platform=self.session.platform,
            )

        page = self.client.get(self.scraper.login_url)
        self._check_challenge(page.text)

        token = self.scraper.extract_csrf_token(page.text, self.session.cookies)
        if token is None and profile.csrf_location != 'none' and profile.csrf_field:
            raise UnrecognizedLayout(
                f"CSRF token '{profile.csrf_field}' not found on login page",
                snippet=page.text,
                platform=self.session.platform,
            )

        form = {
            profile.username_field: credentials.username,
            profile.password_field: credentials.password,
        }
        if token is not None:
            form[profile.csrf_field] = token
        form.update(dict(profile.extra_fields))

        self.logger.debug(f"Posting login form to {self.scraper.login_url}")
        resp = self.client.post(self.scraper.login_url, data=form)
        username = self._classify(resp.text)
        self.session.csrf_token = self.scraper.extract_csrf_token(resp.text, self.session.cookies) or token
        return username

    def _login_with_token(self, credentials: Credentials) -> str:
        profile = self.scraper.auth
        token = credentials.token or credentials.password
        if not token:
            raise CredentialsRequired(
                f"a '{profile.token_cookie}' cookie value is required",
                platform=self.session.platform,
            )

        domain = urlparse(self.scraper.base_url).hostname
        self.session.cookies.set(profile.token_cookie, token, domain=domain, path='/')
        try:
            resp = self.client.get(self.scraper.home_url)
            return self._classify(resp.text)
        except AuthError:
            self.session.cookies.clear(domain, '/', profile.token_cookie)
            raise

    def _check_challenge(self, html: str):
        if self.scraper.has_challenge(html):
            raise ChallengeRequired(
                'the platform asked for a CAPTCHA; log in through a browser first',
                platform=self.session.platform,
            )

    def _classify(self, html: str) -> str:
        self._check_challenge(html)
        if self.scraper.has_invalid_credentials_marker(html):
            raise InvalidCredentials('the platform rejected the credentials', platform=self.session.platform)

        username = self.scraper.extract_username(html)
        if username and not self.scraper.has_login_form(html):
            return username
        if self.scraper.has_login_form(html):
            raise InvalidCredentials('still on the login page after logging in',
                                     platform=self.session.platform)
        raise AuthError('could not confirm the login from the response', platform=self.session.platform)

    def mark_expired(self):
        if self.session.status is not AuthStatus.EXPIRED:
            self.logger.info('Session expired')
        self.session.status = AuthStatus.EXPIRED
        self.session.unverified = False

    def logout(self):
        self.session.reset()
        if self.store is not None:
            self.store.delete(self.session.platform)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    @contextmanager
    def operation(self):
        """Scope within which at most one re-login happens."""
        outer = self._relogin_budget
        if outer is None:
            self._relogin_budget = 1
        try:
            yield self
        finally:
            if outer is None:
                self._relogin_budget = None

    def ensure_authenticated(self, required: bool | None = None):
        if required is None:
            required = self.scraper.REQUIRES_LOGIN
        status = self.session.status
        if status is AuthStatus.AUTHENTICATED:
            return self.session
        if status is AuthStatus.ANONYMOUS and not required:
            return self.session
        return self.login()

    def request(self, method: str, url: str, refresh=None, **kwargs):
        """Send through the HTTP client, re-logging in once if the session has lapsed.

        ``refresh(url, kwargs)`` is called after a re-login and returns the
        ``(url, kwargs)`` to re-send, for requests that carry session-bound
        values such as a CSRF token.
        """
        resp = self.client.request(method, url, **kwargs)
        if not self.scraper.is_expired(resp):
            if self.session.unverified:
                self.session.unverified = False
                self.logger.debug('Restored session confirmed')
            return resp

        was_authenticated = self.session.status in (AuthStatus.AUTHENTICATED, AuthStatus.EXPIRED)
        if was_authenticated:
            self.mark_expired()

        if not self._take_relogin():
            if was_authenticated:
                raise SessionExpired(f'session expired while requesting {url}',
                                     platform=self.session.platform)
            raise CredentialsRequired(f'{url} requires login', platform=self.session.platform)

        self.login()
        if refresh is not None:
            url, kwargs = refresh(url, kwargs)
        resp = self.client.request(method, url, **kwargs)
        if self.scraper.is_expired(resp):
            self.mark_expired()
            raise SessionExpired(f'session rejected again right after re-login ({url})',
                                 platform=self.session.platform)
        return resp

    def get(self, url: str, **kwargs):
        return self.request('GET', url, **kwargs)

    def post(self, url: str, data=None, **kwargs):
        return self.request('POST', url, data=data, **kwargs)

    def _take_relogin(self) -> bool:
        if self.credentials is None:
            return False
        budget = self._relogin_budget
        if budget is None:
            # Outside operation(): a single re-login for this call only
            budget = 1
        if budget <= 0:
            return False
        if self._relogin_budget is not None:
            self._relogin_budget -= 1
        self.relogin_attempts += 1
        return True
