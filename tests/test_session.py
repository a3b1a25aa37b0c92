import json
import os
import stat

import pytest
from requests.cookies import create_cookie

from cpjudge.scrapers.common import Platform
from cpjudge.session import AuthStatus, Session, SessionStore


@pytest.fixture()
def authenticated_session():
    session = Session(platform=Platform.ATCODER)
    session.cookies.set_cookie(create_cookie(
        'REVEL_SESSION', 'a%3Db+c/=', domain='atcoder.jp', path='/', secure=True,
        expires=2000000000, rest={'HttpOnly': None},
    ))
    session.cookies.set_cookie(create_cookie('REVEL_FLASH', '', domain='atcoder.jp', path='/'))
    session.csrf_token = 'Lg8x+/ab0='
    session.status = AuthStatus.AUTHENTICATED
    session.username = 'tourist'
    return session


class TestSessionStore:
    def test_round_trip_is_byte_exact(self, store, authenticated_session):
        store.save(authenticated_session)
        loaded = store.load(Platform.ATCODER)

        assert loaded.status is AuthStatus.AUTHENTICATED
        assert loaded.username == 'tourist'
        assert loaded.csrf_token == 'Lg8x+/ab0='
        assert loaded.saved_at is not None

        cookies = {c.name: c for c in loaded.cookies}
        assert set(cookies) == {'REVEL_SESSION', 'REVEL_FLASH'}
        revel = cookies['REVEL_SESSION']
        assert revel.value == 'a%3Db+c/='
        assert revel.domain == 'atcoder.jp'
        assert revel.path == '/'
        assert revel.secure is True
        assert revel.expires == 2000000000
        assert revel.has_nonstandard_attr('HttpOnly')
        assert cookies['REVEL_FLASH'].value == ''

    def test_restored_session_is_unverified(self, store, authenticated_session):
        store.save(authenticated_session)
        loaded = store.load('atcoder')
        assert loaded.is_authenticated
        assert loaded.unverified is True

    def test_file_is_owner_only(self, store, authenticated_session):
        path = store.save(authenticated_session)
        assert path == os.path.join(store.directory, 'atcoder.json')
        mode = stat.S_IMODE(os.stat(path).st_mode)
        assert mode == 0o600
        assert not os.path.exists(path + '.tmp')

    def test_missing_file_gives_anonymous(self, store):
        session = store.load(Platform.CODEFORCES)
        assert session.platform is Platform.CODEFORCES
        assert session.status is AuthStatus.ANONYMOUS
        assert len(session.cookies) == 0

    def test_corrupt_file_gives_anonymous(self, store, caplog):
        os.makedirs(store.directory)
        with open(store.path_for('atcoder'), 'w') as f:
            f.write('{not json')
        session = store.load('atcoder')
        assert session.status is AuthStatus.ANONYMOUS
        assert 'Ignoring unreadable session file' in caplog.text

    def test_wrong_platform_ignored(self, store, authenticated_session):
        os.makedirs(store.directory)
        with open(store.path_for('codeforces'), 'w') as f:
            json.dump(authenticated_session.to_dict(), f)
        session = store.load('codeforces')
        assert session.platform is Platform.CODEFORCES
        assert session.status is AuthStatus.ANONYMOUS

    def test_interrupted_login_restored_as_anonymous(self, store):
        session = Session(platform=Platform.ATCODER, status=AuthStatus.LOGGING_IN)
        store.save(session)
        assert store.load('atcoder').status is AuthStatus.ANONYMOUS

    def test_delete(self, store, authenticated_session):
        path = store.save(authenticated_session)
        store.delete('atcoder')
        assert not os.path.exists(path)
        store.delete('atcoder')


class TestSession:
    def test_reset(self, authenticated_session):
        authenticated_session.unverified = True
        authenticated_session.reset()
        assert authenticated_session.status is AuthStatus.ANONYMOUS
        assert authenticated_session.username is None
        assert authenticated_session.csrf_token is None
        assert authenticated_session.unverified is False
        assert len(authenticated_session.cookies) == 0

    def test_to_dict(self, authenticated_session):
        data = authenticated_session.to_dict()
        assert data['version'] == 1
        assert data['platform'] == 'atcoder'
        assert data['status'] == 'authenticated'
        assert len(data['cookies']) == 2
