import threading

import pytest
import requests

from cpjudge.auth import Authenticator, Credentials
from cpjudge.errors import (
    AlreadyAccepted,
    CredentialsRequired,
    NetworkError,
    OperationCancelled,
    PollTimeoutWarning,
    RejectedByPlatform,
)
from cpjudge.scrapers import get_scraper_instance
from cpjudge.scrapers.common import JudgeStatus, Platform, ProblemRef, SubmissionStatus
from cpjudge.services.submit_service import PollState, SubmissionRecord, SubmitService
from cpjudge.session import AuthStatus, Session
from helpers import load_fixture, make_response

SUBMIT = 'https://atcoder.jp/contests/abc300/submit'
MINE = 'https://atcoder.jp/contests/abc300/submissions/me'
SUBMISSION = 'https://atcoder.jp/contests/abc300/submissions/41234567'

PROBLEM = ProblemRef(
    problem_id='A',
    name='N-choice question',
    url='https://atcoder.jp/contests/abc300/tasks/abc300_a',
)


class FakeClock:
    """Clock advanced only by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
        return False


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def make_service(make_http, clock):
    def factory(authenticated=True, cancel_event=None, platform=Platform.ATCODER,
                username='tourist', credentials=None, **kwargs):
        session = Session(platform=platform)
        if authenticated:
            session.status = AuthStatus.AUTHENTICATED
            session.username = username
        scraper = get_scraper_instance(platform)
        auth = Authenticator(session, make_http(session), scraper, credentials=credentials)
        kwargs.setdefault('initial_interval', 1.0)
        kwargs.setdefault('max_interval', 8.0)
        kwargs.setdefault('max_wait', 100.0)
        return SubmitService(auth, scraper, cancel_event=cancel_event,
                             clock=clock, sleep=clock.sleep, **kwargs)

    return factory


def _record():
    return SubmissionRecord(
        problem=PROBLEM,
        contest_id='abc300',
        source='int main(){}',
        language_id='5001',
        submission_id='41234567',
        url=SUBMISSION,
    )


def _accepted_response():
    redirect = make_response('', 302, url=SUBMIT, headers={'Location': '/contests/abc300/submissions/me'})
    return make_response(load_fixture('atcoder_submissions_me.html'), url=MINE, history=[redirect])


YUKI_PROBLEM = ProblemRef(problem_id='B', name='Sum of Squares', url='https://yukicoder.me/problems/no/2301')
YUKI_SUBMIT = 'https://yukicoder.me/problems/no/2301/submit'
YUKI_POST = 'https://yukicoder.me/problems/no/2301/submit_code'
YUKI_SOLVED = 'https://yukicoder.me/api/v1/solved/name/yuki2006'
YUKI_SUBMIT_PAGE = '''<html><body><div id="content">
<form id="submit_form" action="/problems/no/2301/submit_code" method="post" enctype="multipart/form-data">
<input type="hidden" name="csrf_token" value="yk-csrf">
<select name="lang"><option value="cpp17">C++17</option></select>
<textarea name="source"></textarea>
</form></div></body></html>'''


def _yuki_accepted_response():
    redirect = make_response('', 302, url=YUKI_POST, headers={'Location': '/submissions/987654'})
    return make_response('<html></html>', url='https://yukicoder.me/submissions/987654', history=[redirect])


class TestSubmit:
    def test_submit_returns_record(self, make_service, transport):
        transport.add('GET', SUBMIT, make_response(load_fixture('atcoder_submit.html')))
        transport.add('POST', SUBMIT, _accepted_response())
        service = make_service()

        record = service.submit('abc300', PROBLEM, 'int main(){}', '5001')

        assert record.submission_id == '41234567'
        assert record.url == SUBMISSION
        assert record.state is PollState.PENDING
        assert record.submitted_at is not None
        post = transport.calls_to('POST', SUBMIT)[0]
        assert post.data['data.TaskScreenName'] == 'abc300_a'
        assert post.data['data.LanguageId'] == '5001'
        assert post.data['csrf_token'] == 'subm1t+tok=='
        assert service.auth.session.csrf_token == 'subm1t+tok=='

    def test_rejected_submission(self, make_service, transport):
        transport.add('GET', SUBMIT, make_response(load_fixture('atcoder_submit.html')))
        transport.add('POST', SUBMIT, make_response(load_fixture('atcoder_submit_rejected.html')))

        with pytest.raises(RejectedByPlatform) as exc_info:
            make_service().submit('abc300', PROBLEM, 'int main(){}', '5001')

        assert 'within 5 seconds' in str(exc_info.value)
        assert exc_info.value.problem_id == 'A'
        assert len(transport.calls_to('POST', SUBMIT)) == 1

    def test_error_status_rejected(self, make_service, transport):
        transport.add('GET', SUBMIT, make_response(load_fixture('atcoder_submit.html')))
        transport.add('POST', SUBMIT, make_response('forbidden', 403))
        with pytest.raises(RejectedByPlatform) as exc_info:
            make_service().submit('abc300', PROBLEM, 'int main(){}', '5001')
        assert exc_info.value.status_code == 403

    def test_unprocessed_server_error_retried(self, make_service, transport):
        """A 5xx without a submission id means the platform never took it."""
        transport.add('GET', SUBMIT, make_response(load_fixture('atcoder_submit.html')))
        transport.add('POST', SUBMIT, make_response('busy', 503, url=SUBMIT), _accepted_response())

        record = make_service().submit('abc300', PROBLEM, 'int main(){}', '5001')

        assert record.submission_id == '41234567'
        assert len(transport.calls_to('POST', SUBMIT)) == 2

    def test_submit_requires_login(self, make_service, transport):
        with pytest.raises(CredentialsRequired):
            make_service(authenticated=False).submit('abc300', PROBLEM, 'x', '5001')
        assert transport.calls == []

    def test_relogin_resends_with_fresh_csrf_token(self, make_service, transport):
        """A form built before the re-login carries a dead token; it is rebuilt."""
        page = load_fixture('atcoder_submit.html')
        login = 'https://atcoder.jp/login'
        transport.add('GET', SUBMIT, make_response(page),
                      make_response(page.replace('subm1t+tok==', 'fr3sh+tok==')))
        transport.add('POST', SUBMIT,
                      make_response(load_fixture('atcoder_login.html'),
                                    url='https://atcoder.jp/login?continue=https%3A%2F%2Fatcoder.jp%2Fcontests%2Fabc300'),
                      _accepted_response())
        transport.add('GET', login, make_response(load_fixture('atcoder_login.html')))
        transport.add('POST', login, make_response(load_fixture('atcoder_home.html'), url='https://atcoder.jp/home'))
        service = make_service(credentials=Credentials(username='tourist', password='hunter2'))

        record = service.submit('abc300', PROBLEM, 'int main(){}', '5001')

        assert record.submission_id == '41234567'
        posts = transport.calls_to('POST', SUBMIT)
        assert [p.data['csrf_token'] for p in posts] == ['subm1t+tok==', 'fr3sh+tok==']
        assert posts[1].data['sourceCode'] == 'int main(){}'
        assert len(transport.calls_to('GET', SUBMIT)) == 2
        assert service.auth.session.csrf_token == 'fr3sh+tok=='


class TestSubmitYukicoder:
    @pytest.fixture
    def service(self, make_service):
        return make_service(platform=Platform.YUKICODER, username='yuki2006')

    def test_form_sent_as_multipart(self, service, transport):
        transport.add('GET', YUKI_SOLVED, make_response('[{"No": 1, "ProblemId": 1}]'))
        transport.add('GET', YUKI_SUBMIT, make_response(YUKI_SUBMIT_PAGE))
        transport.add('POST', YUKI_POST, _yuki_accepted_response())

        record = service.submit('no', YUKI_PROBLEM, 'int main(){}', 'cpp17')

        assert record.submission_id == '987654'
        assert record.url == 'https://yukicoder.me/submissions/987654'
        post = transport.calls_to('POST', YUKI_POST)[0]
        assert post.data is None
        assert post.files == {
            'csrf_token': (None, 'yk-csrf'),
            'lang': (None, 'cpp17'),
            'source': (None, 'int main(){}'),
        }
        prepared = requests.Request('POST', YUKI_POST, files=post.files).prepare()
        assert prepared.headers['Content-Type'].startswith('multipart/form-data; boundary=')
        assert b'name="source"\r\n\r\nint main(){}' in prepared.body
        assert b'filename=' not in prepared.body

    def test_already_accepted(self, service, transport):
        transport.add('GET', YUKI_SOLVED, make_response('[{"No": 2301, "ProblemId": 7890}]'))

        with pytest.raises(AlreadyAccepted) as exc_info:
            service.submit('no', YUKI_PROBLEM, 'int main(){}', 'cpp17')

        assert exc_info.value.problem_id == 'B'
        assert [c.url for c in transport.calls] == [YUKI_SOLVED]

    def test_skip_checking_if_accepted(self, service, transport):
        transport.add('GET', YUKI_SUBMIT, make_response(YUKI_SUBMIT_PAGE))
        transport.add('POST', YUKI_POST, _yuki_accepted_response())

        record = service.submit('no', YUKI_PROBLEM, 'int main(){}', 'cpp17',
                                skip_checking_if_accepted=True)

        assert record.submission_id == '987654'
        assert transport.calls_to('GET', YUKI_SOLVED) == []

    def test_solved_lookup_failure_stops_submit(self, service, transport):
        transport.add('GET', YUKI_SOLVED, make_response('unavailable', 404))
        with pytest.raises(NetworkError):
            service.submit('no', YUKI_PROBLEM, 'int main(){}', 'cpp17')
        assert transport.calls_to('POST', YUKI_POST) == []


class TestPoll:
    def test_until_terminal_verdict(self, make_service, transport, clock):
        transport.add('GET', SUBMISSION,
                      make_response(load_fixture('atcoder_submission_judging.html')),
                      make_response(load_fixture('atcoder_submission_judging.html')),
                      make_response(load_fixture('atcoder_submission_ac.html')))

        record = make_service().poll(_record())

        assert record.state is PollState.DONE
        assert record.verdict is SubmissionStatus.AC
        assert record.polls == 3
        assert record.finished_at is not None
        assert record.warning is None
        assert clock.sleeps == [1.0, 2.0]

    def test_timeout_leaves_record_judging(self, make_service, transport, clock):
        transport.add('GET', SUBMISSION, make_response(load_fixture('atcoder_submission_judging.html')))
        service = make_service(initial_interval=1.0, max_interval=4.0, max_wait=10.0)

        record = service.poll(_record())

        assert record.state is PollState.JUDGING
        assert not record.is_done
        assert isinstance(record.warning, PollTimeoutWarning)
        assert record.warning.waited == 10.0
        assert record.last_status.progress == '3/12'
        # Doubling stops at max_interval; the last sleep is cut to the deadline
        assert clock.sleeps == [1.0, 2.0, 4.0, 3.0]

    def test_max_wait_override(self, make_service, transport, clock):
        transport.add('GET', SUBMISSION, make_response(load_fixture('atcoder_submission_judging.html')))
        record = make_service().poll(_record(), max_wait=0)
        assert record.warning is not None
        assert clock.sleeps == []
        assert len(transport.calls) == 1

    def test_done_record_not_polled(self, make_service, transport):
        record = _record()
        record.observe(JudgeStatus(SubmissionStatus.WA, 'WA'))
        result = make_service().poll(record)
        assert result.verdict is SubmissionStatus.WA
        assert transport.calls == []

    def test_cancel_before_polling(self, make_service, transport):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelled):
            make_service(cancel_event=cancel).poll(_record())
        assert transport.calls == []

    def test_cancel_while_sleeping(self, make_service, transport):
        transport.add('GET', SUBMISSION, make_response(load_fixture('atcoder_submission_judging.html')))
        service = make_service()
        service._sleep = lambda seconds: True
        with pytest.raises(OperationCancelled):
            service.poll(_record())
        assert len(transport.calls) == 1

    def test_submit_and_wait(self, make_service, transport):
        transport.add('GET', SUBMIT, make_response(load_fixture('atcoder_submit.html')))
        transport.add('POST', SUBMIT, _accepted_response())
        transport.add('GET', SUBMISSION, make_response(load_fixture('atcoder_submission_ac.html')))

        record = make_service().submit_and_wait('abc300', PROBLEM, 'int main(){}', '5001')

        assert record.verdict is SubmissionStatus.AC
        assert record.verdict_text == 'AC'


class TestSubmissionRecord:
    def test_pending_then_judging(self):
        record = _record()
        record.observe(JudgeStatus(SubmissionStatus.PENDING, 'WJ'))
        assert record.state is PollState.PENDING
        record.observe(JudgeStatus(SubmissionStatus.JUDGING, '1/5', progress='1/5'))
        assert record.state is PollState.JUDGING

    def test_done_is_final(self):
        record = _record()
        record.observe(JudgeStatus(SubmissionStatus.AC, 'AC'))
        record.observe(JudgeStatus(SubmissionStatus.JUDGING, 'Judging'))
        assert record.state is PollState.DONE
        assert record.verdict is SubmissionStatus.AC
        assert record.polls == 1

    def test_unknown_verdict_is_terminal(self):
        record = _record()
        record.observe(JudgeStatus(SubmissionStatus.UNKNOWN, 'WTF'))
        assert record.is_done
