import os
import signal
import sys
import threading

import pytest

from cpjudge.auth import Credentials
from cpjudge.client import JudgeClient, cancel_on_interrupt
from cpjudge.runner.harness import ExecutionVerdict
from cpjudge.scrapers.common import Problem, SubmissionStatus, TestCase
from cpjudge.session import AuthStatus
from helpers import load_fixture, make_response

LOGIN = 'https://atcoder.jp/login'
TASKS = 'https://atcoder.jp/contests/abc300/tasks'
SUBMIT = 'https://atcoder.jp/contests/abc300/submit'
SUBMISSION = 'https://atcoder.jp/contests/abc300/submissions/41234567'


@pytest.fixture()
def client_config(config, session_dir):
    class Config(config):
        SESSION_DIR = session_dir

    return Config


@pytest.fixture()
def client(client_config, transport):
    with JudgeClient('atcoder', config=client_config, http=transport,
                     credentials=Credentials('tourist', 'hunter2')) as client:
        yield client


def _serve_contest(transport):
    transport.add('GET', LOGIN, make_response(load_fixture('atcoder_login.html')))
    transport.add('POST', LOGIN, make_response(load_fixture('atcoder_home.html'), url='https://atcoder.jp/home'))
    transport.add('GET', TASKS, make_response(load_fixture('atcoder_tasks.html')))
    for letter in 'abc':
        transport.add('GET', f'{TASKS}/abc300_{letter}', make_response(load_fixture('atcoder_task.html')))


class TestJudgeClient:
    def test_scrape_logs_in_first(self, client, transport, client_config):
        _serve_contest(transport)

        result = client.scrape('abc300')

        assert result.ok
        assert [p.problem_id for p in result.problems] == ['A', 'B', 'C']
        assert client.auth.status is AuthStatus.AUTHENTICATED
        assert transport.calls[0].url == LOGIN
        assert os.path.exists(os.path.join(client_config.SESSION_DIR, 'atcoder.json'))

    def test_scrape_then_submit(self, client, transport, tmp_path):
        _serve_contest(transport)
        transport.add('GET', SUBMIT, make_response(load_fixture('atcoder_submit.html')))
        redirect = make_response('', 302, url=SUBMIT,
                                 headers={'Location': '/contests/abc300/submissions/me'})
        transport.add('POST', SUBMIT, make_response(
            load_fixture('atcoder_submissions_me.html'),
            url='https://atcoder.jp/contests/abc300/submissions/me', history=[redirect],
        ))
        transport.add('GET', SUBMISSION, make_response(load_fixture('atcoder_submission_ac.html')))
        source = tmp_path / 'main.cpp'
        source.write_text('int main() { return 0; }\n')

        problem = client.scrape('abc300', ['A']).problems[0]
        record = client.submit(problem, str(source))

        assert record.verdict is SubmissionStatus.AC
        post = transport.calls_to('POST', SUBMIT)[0]
        assert post.data['data.LanguageId'] == '5001'
        assert post.data['sourceCode'] == 'int main() { return 0; }\n'

    def test_submit_needs_contest(self, client, tmp_path):
        source = tmp_path / 'main.cpp'
        source.write_text('')
        problem = Problem(problem_id='A', name='x', url='https://atcoder.jp/contests/abc300/tasks/abc300_a')
        with pytest.raises(ValueError, match='pass contest_id'):
            client.submit(problem, str(source))

    def test_local_test_run(self, client):
        problem = Problem(
            problem_id='A', name='Echo', time_limit_ms=2000,
            test_cases=[TestCase('sample1', b'1 2', b'1 2'), TestCase('sample2', b'3', b'4')],
        )
        report = client.test(problem, [sys.executable, '-c', 'import sys; print(sys.stdin.read().strip())'])
        assert [o.verdict for o in report.outcomes] == [
            ExecutionVerdict.ACCEPTED, ExecutionVerdict.WRONG_ANSWER,
        ]

    def test_local_test_with_epsilon(self, client):
        problem = Problem(problem_id='A', name='Root', test_cases=[TestCase('sample1', b'', b'1.4142')])
        report = client.test(problem, [sys.executable, '-c', 'print(2 ** 0.5)'], epsilon=1e-3)
        assert report.all_accepted

    def test_credentials_from_environment(self, client_config, transport, monkeypatch):
        monkeypatch.setenv('CPJUDGE_ATCODER_USERNAME', 'petr')
        monkeypatch.setenv('CPJUDGE_ATCODER_PASSWORD', 'secret')
        client = JudgeClient('atcoder', config=client_config, http=transport)
        assert client.auth.credentials.username == 'petr'

    def test_unknown_platform(self, client_config):
        with pytest.raises(ValueError):
            JudgeClient('topcoder', config=client_config)


@pytest.mark.skipif(not hasattr(signal, 'raise_signal'), reason='needs signal.raise_signal')
class TestCancelOnInterrupt:
    def test_first_interrupt_sets_event(self):
        with cancel_on_interrupt() as cancel:
            signal.raise_signal(signal.SIGINT)
            assert cancel.is_set()

    def test_second_interrupt_raises(self):
        with pytest.raises(KeyboardInterrupt):
            with cancel_on_interrupt():
                signal.raise_signal(signal.SIGINT)
                signal.raise_signal(signal.SIGINT)

    def test_handler_restored(self):
        previous = signal.getsignal(signal.SIGINT)
        with cancel_on_interrupt():
            pass
        assert signal.getsignal(signal.SIGINT) is previous

    def test_uses_given_event(self):
        event = threading.Event()
        with cancel_on_interrupt(event) as cancel:
            assert cancel is event
