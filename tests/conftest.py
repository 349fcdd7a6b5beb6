# tests/conftest.py
"""Shared fixtures for the hepf-core test-suite."""

import textwrap

import pytest

from hepf_core.config import AnalysisConfig
from hepf_core.ir_parser import parse_module


WORKER_SOURCE = textwrap.dedent("""\
    ; two workers sharing a lock, one of them leaks it on a branch
    declare @pthread_mutex_lock
    declare @pthread_mutex_unlock
    global @g_lock

    define @worker(%m, %buf) {
    entry:
      %p = cast %m
      call @pthread_mutex_lock(%p)
      %x = load %buf
      %c = icmp %x, 0
      br %c, body, done
    body:
      %y = phi [%x, entry], [%z, body]
      %z = add %y, 1
      store %z, %buf
      %again = icmp %z, 10
      br %again, body, done
    done:
      call @pthread_mutex_unlock(%m)
      ret
    }

    define @leaky(%m) {
    entry:
      call @mutex_lock(%m)
      call @spin_lock(@g_lock)
      %n = call @read()
      %r = call @process(%n)
      br %r, unlock, out
    unlock:
      call @spin_unlock(@g_lock)
      call @mutex_unlock(%m)
      br out
    out:
      ret
    }

    define @plain() {
      %v = add 1, 2
      ret %v
    }
""")


@pytest.fixture
def worker_module():
    """A small module exercising locks, loops, taint and memory."""
    return parse_module(WORKER_SOURCE, name="worker.ir")


@pytest.fixture
def default_config():
    return AnalysisConfig()


@pytest.fixture
def worker_file(tmp_path):
    path = tmp_path / "worker.ir"
    path.write_text(WORKER_SOURCE, encoding="utf-8")
    return path
