from __future__ import annotations

import logging
import random
import threading
import time

import requests
from urllib3.exceptions import NewConnectionError

from cpjudge.errors import NetworkError, OperationCancelled
from cpjudge.scrapers.rate_limiter import get_platform_limiter
from cpjudge.session import Session

IDEMPOTENT_METHODS = frozenset({'GET', 'HEAD', 'OPTIONS'})
MAX_RETRY_AFTER = 60.0


def is_transient_status(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code < 600


def never_reached_server(exc: Exception) -> bool:
    """True when the request failed before a connection was established.

    Besides connect timeouts this covers refused connections and DNS
    failures, which urllib3 reports as NewConnectionError inside MaxRetryError.
    """
    if isinstance(exc, requests.ConnectTimeout):
        return True
    reason = exc.args[0] if exc.args else None
    reason = getattr(reason, 'reason', reason)
    return isinstance(reason, NewConnectionError)


class HttpClient:
    """HTTP transport bound to one Session.

    Requests share the Session's cookie jar, go through the platform's
    politeness limiter and are retried with exponential backoff on transient
    failures. Non-idempotent requests are only retried when the caller's
    ``is_unprocessed`` predicate says the platform did not act on them.
    """

    def __init__(self, session: Session, timeout: float = 30.0, max_retries: int = 3,
                 backoff_base: float = 1.0, rate_limit: float = 1.0,
                 user_agent: str | None = None, http: requests.Session | None = None,
                 cancel_event: threading.Event | None = None,
                 rate_limiter=None, jitter=random.random):
        self.session = session
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self.cancel_event = cancel_event or threading.Event()
        self.rate_limiter = rate_limiter or get_platform_limiter(session.platform, rate_limit)
        self._jitter = jitter
        self.logger = logging.getLogger(f'scraper.{session.platform.value}')

        self.http = http or requests.Session()
        if user_agent:
            self.http.headers['User-Agent'] = user_agent
        self.http.cookies = session.cookies

    @classmethod
    def from_config(cls, session: Session, config, **kwargs) -> 'HttpClient':
        kwargs.setdefault('timeout', config.HTTP_TIMEOUT)
        kwargs.setdefault('max_retries', config.HTTP_MAX_RETRIES)
        kwargs.setdefault('backoff_base', config.HTTP_BACKOFF_BASE)
        kwargs.setdefault('rate_limit', config.SCRAPER_RATE_LIMIT)
        kwargs.setdefault('user_agent', config.USER_AGENT)
        return cls(session, **kwargs)

    def get(self, url: str, **kwargs) -> requests.Response:
        return self.request('GET', url, **kwargs)

    def post(self, url: str, data=None, **kwargs) -> requests.Response:
        return self.request('POST', url, data=data, **kwargs)

    def request(self, method: str, url: str, data=None, params=None, headers=None,
                files=None, allow_redirects: bool = True, idempotent: bool | None = None,
                is_unprocessed=None) -> requests.Response:
        """Send a request, retrying transient failures.

        Returns the final response, including 4xx responses, which are left
        for the caller to interpret. Raises NetworkError once the retry
        budget is spent and OperationCancelled when the cancel event is set.
        """
        method = method.upper()
        if idempotent is None:
            idempotent = method in IDEMPOTENT_METHODS

        last_error = None
        resp = None
        for attempt in range(self.max_retries):
            self._check_cancelled(url)
            self.rate_limiter.wait(self.cancel_event)
            self._check_cancelled(url)

            try:
                resp = self.http.request(
                    method, url,
                    data=data,
                    params=params,
                    headers=headers,
                    files=files,
                    timeout=self.timeout,
                    allow_redirects=allow_redirects,
                )
            except (requests.ConnectionError, requests.Timeout) as e:
                last_error = e
                resp = None
                safe = idempotent or never_reached_server(e)
                self.logger.warning(
                    f"{method} {url} failed (attempt {attempt + 1}/{self.max_retries}): {e}"
                )
                if not safe:
                    raise NetworkError(
                        f"{method} {url} failed and may have been processed; not retrying",
                        platform=self.session.platform, url=url,
                    ) from e
            else:
                self._check_cancelled(url)
                self._store_cookies(resp)
                if not is_transient_status(resp.status_code):
                    return resp

                last_error = None
                self.logger.warning(
                    f"{method} {url} returned {resp.status_code} "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                if not idempotent and not (is_unprocessed and is_unprocessed(resp)):
                    # The platform may have acted on it; let the caller look
                    return resp

            if attempt < self.max_retries - 1:
                self._backoff(attempt, resp)

        if last_error is not None:
            raise NetworkError(
                f"{method} {url} failed after {self.max_retries} attempts",
                platform=self.session.platform, url=url,
            ) from last_error
        raise NetworkError(
            f"{method} {url} returned {resp.status_code} after {self.max_retries} attempts",
            platform=self.session.platform, url=url, status_code=resp.status_code,
        )

    def _backoff(self, attempt: int, resp=None):
        delay = self.backoff_base * (2 ** attempt) + self._jitter() * self.backoff_base
        retry_after = resp.headers.get('Retry-After') if resp is not None else None
        if retry_after:
            try:
                delay = max(delay, min(float(retry_after), MAX_RETRY_AFTER))
            except ValueError:
                pass
        if delay <= 0:
            return
        self.logger.debug(f"Retrying in {delay:.2f}s")
        if self.cancel_event.wait(delay):
            raise OperationCancelled('cancelled while backing off', platform=self.session.platform)

    def _check_cancelled(self, url: str):
        if self.cancel_event.is_set():
            raise OperationCancelled(f'cancelled before {url}', platform=self.session.platform)

    def _store_cookies(self, resp: requests.Response):
        # Cookies set on redirects too
        jar = self.session.cookies
        for r in list(getattr(resp, 'history', [])) + [resp]:
            if r.cookies is not None and r.cookies is not jar:
                jar.update(r.cookies)

    def close(self):
        self.http.close()


def sleep_interruptibly(seconds: float, cancel_event: threading.Event | None) -> bool:
    """Sleep up to ``seconds``; True when woken by the cancel event."""
    if seconds <= 0:
        return bool(cancel_event and cancel_event.is_set())
    if cancel_event is None:
        time.sleep(seconds)
        return False
    return cancel_event.wait(seconds)
