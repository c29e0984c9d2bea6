"""Tests for execution listeners."""

import logging

import pytest

from phaseflow.listener import ListenerChain, LoggingListener, NoOpListener, Token, TokenKind
from phaseflow.schemas import JobInstance, Phase, Status, TargetResult, TargetInstance
from phaseflow.utils import utcnow


class Named:
    def __init__(self, name):
        self.name = name


class ParentRecorder(NoOpListener):
    """Remembers which parent token every start call received."""

    def __init__(self):
        self.issued = {}
        self.parents = {}
        self.finished = []

    def start_lifecycle(self, job, instance, phases):
        token = super().start_lifecycle(job, instance, phases)
        self.issued["lifecycle"] = token
        return token

    def start_job(self, job, instance, phase, parent):
        token = super().start_job(job, instance, phase, parent)
        self.issued["job"] = token
        self.parents["job"] = parent
        return token

    def start_target(self, target, instance, phase, parent):
        self.parents["target"] = parent
        return super().start_target(target, instance, phase, parent)

    def finish_target(self, token, result):
        self.finished.append(token)


class Exploding(NoOpListener):
    def start_target(self, target, instance, phase, parent):
        raise RuntimeError("listener bug")

    def finish_job(self, token, result):
        raise RuntimeError("listener bug")


@pytest.fixture
def instance():
    return JobInstance.create(None, "p", "main")


@pytest.fixture
def target_result():
    now = utcnow()
    return TargetResult("t", Status.SUCCESS, now, now, phase=Phase.BUILD)


class TestToken:
    def test_fresh_ids(self):
        assert Token.new(TokenKind.JOB) != Token.new(TokenKind.JOB)

    def test_noop_tokens(self):
        listener = NoOpListener()
        assert listener.start_check(Named("c"), None).kind == TokenKind.CHECK


class TestListenerChain:
    """Tests for fan-out, token mapping and failure isolation."""

    def test_passes_child_parent_tokens(self, instance):
        recorder = ParentRecorder()
        chain = ListenerChain([NoOpListener(), recorder])

        lifecycle = chain.start_lifecycle(Named("main"), instance, [Phase.BUILD])
        job = chain.start_job(Named("main"), instance, Phase.BUILD, lifecycle)
        chain.start_target(Named("t"), TargetInstance.create(None, "p", "t"), Phase.BUILD, job)

        assert recorder.parents["job"] == recorder.issued["lifecycle"]
        assert recorder.parents["target"] == recorder.issued["job"]
        assert lifecycle not in recorder.issued.values()

    def test_finish_forwards_child_token(self, instance, target_result):
        recorder = ParentRecorder()
        chain = ListenerChain([recorder])
        token = chain.start_target(Named("t"), TargetInstance.create(None, "p", "t"), Phase.BUILD, None)
        chain.finish_target(token, target_result)
        assert len(recorder.finished) == 1
        assert recorder.finished[0] != token

    def test_unknown_token(self, target_result):
        chain = ListenerChain([NoOpListener()])
        with pytest.raises(ValueError, match="Unknown or already finished token"):
            chain.finish_target(Token.new(TokenKind.TARGET), target_result)

    def test_double_finish(self, target_result):
        chain = ListenerChain([NoOpListener()])
        token = chain.start_target(Named("t"), TargetInstance.create(None, "p", "t"), Phase.BUILD, None)
        chain.finish_target(token, target_result)
        with pytest.raises(ValueError):
            chain.finish_target(token, target_result)

    def test_failing_listener_isolated(self, instance, target_result, caplog):
        recorder = ParentRecorder()
        chain = ListenerChain([Exploding(), recorder])

        with caplog.at_level(logging.WARNING, logger="phaseflow"):
            token = chain.start_target(Named("t"), TargetInstance.create(None, "p", "t"), Phase.BUILD, None)
            chain.finish_target(token, target_result)
            job = chain.start_job(Named("main"), instance, Phase.BUILD, None)
            chain.finish_job(job, target_result)

        assert len(recorder.finished) == 1
        assert "Exploding.start_target failed" in caplog.text
        assert "Exploding.finish_job failed" in caplog.text

    def test_listeners_property(self):
        listeners = [NoOpListener(), NoOpListener()]
        assert ListenerChain(listeners).listeners == listeners


class TestLoggingListener:
    def test_logs_brackets(self, instance, target_result, caplog):
        listener = LoggingListener()
        with caplog.at_level(logging.INFO, logger="phaseflow"):
            token = listener.start_target(Named("t"), TargetInstance.create(None, "p", "t"), Phase.BUILD, None)
            listener.finish_target(token, target_result)
        assert "Target '_/p/t' build started" in caplog.text
        assert "Target 't' finished with status success" in caplog.text
        started = [r for r in caplog.records if getattr(r, "event", None) == "target_started"]
        assert started[0].phase == "build"
