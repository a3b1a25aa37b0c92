"""Per-platform session state and its on-disk persistence."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from requests.cookies import RequestsCookieJar, create_cookie

from cpjudge.scrapers.common import Platform

logger = logging.getLogger(__name__)

SESSION_FORMAT_VERSION = 1


class AuthStatus(str, Enum):
    ANONYMOUS = 'anonymous'
    LOGGING_IN = 'logging_in'
    AUTHENTICATED = 'authenticated'
    EXPIRED = 'expired'


@dataclass
class Session:
    """Cookie jar, cached CSRF token and authentication status of one platform.

    A Session is owned by one operation at a time. Only the Authenticator
    changes ``status``; the HTTP client only adds cookies to ``cookies``.
    """

    platform: Platform
    cookies: RequestsCookieJar = field(default_factory=RequestsCookieJar)
    csrf_token: str | None = None
    status: AuthStatus = AuthStatus.ANONYMOUS
    username: str | None = None
    # Restored from disk and not yet confirmed by a real response
    unverified: bool = False
    saved_at: datetime | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.status is AuthStatus.AUTHENTICATED

    def reset(self):
        """Forget everything learned from the platform."""
        self.cookies.clear()
        self.csrf_token = None
        self.status = AuthStatus.ANONYMOUS
        self.username = None
        self.unverified = False

    def to_dict(self) -> dict:
        return {
            'version': SESSION_FORMAT_VERSION,
            'platform': self.platform.value,
            'status': self.status.value,
            'username': self.username,
            'csrf_token': self.csrf_token,
            'saved_at': datetime.now(timezone.utc).isoformat(),
            'cookies': [
                {
                    'name': c.name,
                    'value': c.value,
                    'domain': c.domain,
                    'path': c.path,
                    'secure': c.secure,
                    'expires': c.expires,
                    'rest': {'HttpOnly': None} if c.has_nonstandard_attr('HttpOnly') else {},
                }
                for c in self.cookies
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Session':
        jar = RequestsCookieJar()
        for entry in data.get('cookies', []):
            jar.set_cookie(create_cookie(
                name=entry['name'],
                value=entry['value'],
                domain=entry.get('domain', ''),
                path=entry.get('path', '/'),
                secure=entry.get('secure', False),
                expires=entry.get('expires'),
                rest=entry.get('rest') or {},
            ))

        status = AuthStatus(data.get('status', AuthStatus.ANONYMOUS.value))
        # A login that was interrupted never finished
        if status is AuthStatus.LOGGING_IN:
            status = AuthStatus.ANONYMOUS

        saved_at = data.get('saved_at')
        return cls(
            platform=Platform(data['platform']),
            cookies=jar,
            csrf_token=data.get('csrf_token'),
            status=status,
            username=data.get('username'),
            unverified=status is AuthStatus.AUTHENTICATED,
            saved_at=datetime.fromisoformat(saved_at) if saved_at else None,
        )


class SessionStore:
    """Reads and writes ``<directory>/<platform>.json`` with owner-only permissions."""

    def __init__(self, directory: str):
        self.directory = directory

    def path_for(self, platform) -> str:
        return os.path.join(self.directory, f'{Platform(platform).value}.json')

    def load(self, platform) -> Session:
        """Previously saved session, or a fresh anonymous one.

        A stored ``authenticated`` status is restored as-is and only
        confirmed or refuted by the first real request.
        """
        platform = Platform(platform)
        path = self.path_for(platform)
        if not os.path.exists(path):
            return Session(platform=platform)

        try:
            with open(path, encoding='utf-8') as f:
                data = json.load(f)
            session = Session.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable session file {path}: {e}")
            return Session(platform=platform)

        if session.platform is not platform:
            logger.warning(f"Session file {path} belongs to {session.platform.value}, ignoring")
            return Session(platform=platform)

        logger.debug(
            f"Loaded {platform.value} session ({session.status.value}, "
            f"{len(session.cookies)} cookies)"
        )
        return session

    def save(self, session: Session) -> str:
        os.makedirs(self.directory, mode=0o700, exist_ok=True)
        path = self.path_for(session.platform)
        tmp_path = path + '.tmp'
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(session.to_dict(), f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, path)
        logger.info(f"Saved {session.platform.value} session to {path}")
        return path

    def delete(self, platform):
        path = self.path_for(platform)
        if os.path.exists(path):
            os.remove(path)
            logger.info(f"Removed session file {path}")
