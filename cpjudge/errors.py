"""Exception hierarchy shared by the session, scraping, runner and submit layers.

Every error carries the platform and problem it concerns (when known) so an
aborted operation can be reproduced from its message alone. Errors that only
affect one unit of work (one problem, one test case) are collected into result
objects by the services instead of being raised past them.
"""
from __future__ import annotations


class CpJudgeError(Exception):
    def __init__(self, message: str = '', platform=None, problem_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.platform = platform
        self.problem_id = problem_id

    def __str__(self):
        parts = []
        if self.platform is not None:
            parts.append(str(getattr(self.platform, 'value', self.platform)))
        if self.problem_id:
            parts.append(self.problem_id)
        prefix = f"[{'/'.join(parts)}] " if parts else ''
        text = f"{prefix}{self.message}"
        if self.__cause__ is not None:
            text += f" (caused by {type(self.__cause__).__name__}: {self.__cause__})"
        return text


# Network

class NetworkError(CpJudgeError):
    """Transport failure that survived the retry budget."""

    def __init__(self, message: str = '', platform=None, problem_id=None,
                 url: str | None = None, status_code: int | None = None):
        super().__init__(message, platform=platform, problem_id=problem_id)
        self.url = url
        self.status_code = status_code


class OperationCancelled(CpJudgeError):
    """The global cancellation signal was set while waiting."""


# Authentication

class AuthError(CpJudgeError):
    pass


class InvalidCredentials(AuthError):
    pass


class ChallengeRequired(AuthError):
    """The platform asked for a CAPTCHA or similar; never retried automatically."""


class SessionExpired(AuthError):
    pass


class CredentialsRequired(AuthError):
    """Login is needed but the caller supplied no credentials."""


# Extraction

class ExtractError(CpJudgeError):
    pass


class AsymmetricSamples(ExtractError):
    def __init__(self, inputs: int, outputs: int, platform=None, problem_id=None):
        super().__init__(
            f"found {inputs} sample input block(s) but {outputs} output block(s)",
            platform=platform, problem_id=problem_id,
        )
        self.inputs = inputs
        self.outputs = outputs


class UnrecognizedLayout(ExtractError):
    SNIPPET_LENGTH = 200

    def __init__(self, message: str, snippet: str = '', platform=None, problem_id=None):
        super().__init__(message, platform=platform, problem_id=problem_id)
        snippet = ' '.join((snippet or '').split())
        self.snippet = snippet[:self.SNIPPET_LENGTH]

    def __str__(self):
        text = super().__str__()
        if self.snippet:
            text += f" near: {self.snippet!r}"
        return text


# Execution

class ExecutionError(CpJudgeError):
    pass


class SpawnFailure(ExecutionError):
    """The candidate program could not be started at all.

    ``outcomes`` holds whatever test outcomes finished before the failure,
    ``not_reached`` the names of the tests that never ran.
    """

    def __init__(self, message: str, problem_id=None, outcomes=None, not_reached=None):
        super().__init__(message, problem_id=problem_id)
        self.outcomes = list(outcomes or [])
        self.not_reached = list(not_reached or [])


# Submission

class SubmissionError(CpJudgeError):
    pass


class RejectedByPlatform(SubmissionError):
    def __init__(self, message: str, platform=None, problem_id=None, status_code=None):
        super().__init__(message, platform=platform, problem_id=problem_id)
        self.status_code = status_code


class AlreadyAccepted(SubmissionError):
    """The user has already solved the problem; resubmitting needs an explicit opt-in."""


class LanguageResolutionError(SubmissionError):
    def __init__(self, extension: str, candidates=(), platform=None, problem_id=None):
        if candidates:
            message = f"ambiguous language for '.{extension}', candidates: {list(candidates)}"
        else:
            message = f"unknown language for extension '.{extension}'"
        super().__init__(message, platform=platform, problem_id=problem_id)
        self.extension = extension
        self.candidates = list(candidates)


class PollTimeoutWarning(UserWarning):
    """Attached to a SubmissionRecord whose verdict did not arrive in time.

    This is a soft condition: the platform may still judge the submission.
    """

    def __init__(self, submission_id: str, waited: float):
        super().__init__(
            f"submission {submission_id} still judging after {waited:.1f}s"
        )
        self.submission_id = submission_id
        self.waited = waited
