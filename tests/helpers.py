"""HTTP fakes and fixture loading shared by the test modules."""

import os
from dataclasses import dataclass
from urllib.parse import urlparse

import requests
from requests.cookies import RequestsCookieJar

FIXTURES_DIR = os.path.join(os.path.dirname(__file__), 'fixtures')


def load_fixture(name: str) -> str:
    with open(os.path.join(FIXTURES_DIR, name), encoding='utf-8') as f:
        return f.read()


def make_response(text='', status=200, url='', headers=None, cookies=None, history=()):
    """Build a real ``requests.Response`` without touching the network."""
    resp = requests.Response()
    resp.status_code = status
    resp._content = text.encode('utf-8') if isinstance(text, str) else text
    resp.encoding = 'utf-8'
    resp.url = url
    resp.headers.update(headers or {})
    domain = urlparse(url).hostname or ''
    for name, value in (cookies or {}).items():
        resp.cookies.set(name, value, domain=domain, path='/')
    resp.history = list(history)
    return resp


@dataclass
class Call:
    method: str
    url: str
    data: dict
    cookies: dict
    files: dict = None


class FakeTransport:
    """Stands in for ``requests.Session``.

    Responses (or exceptions) are queued per ``(method, url)``; the last one
    queued for a route is repeated once the others are used up.
    """

    def __init__(self):
        self.headers = {}
        self.cookies = RequestsCookieJar()
        self.routes = {}
        self.calls = []

    def add(self, method, url, *responses):
        self.routes.setdefault((method.upper(), url), []).extend(responses)
        return self

    def request(self, method, url, data=None, params=None, headers=None,
                files=None, timeout=None, allow_redirects=True):
        self.calls.append(Call(method, url, data, self.cookies.get_dict(), files))
        queue = self.routes.get((method.upper(), url))
        if not queue:
            raise AssertionError(f"unexpected request: {method} {url}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if not item.url:
            item.url = url
        for r in list(item.history) + [item]:
            self.cookies.update(r.cookies)
        return item

    def calls_to(self, method, url):
        return [c for c in self.calls if c.method == method and c.url == url]

    def close(self):
        pass
