"""Invocation and launch tests."""

from __future__ import annotations

import dataclasses
import os
import sys
from pathlib import Path

import pytest

from procpump.errors import LaunchError
from procpump.runtime.spawner import (
    IS_WINDOWS,
    Invocation,
    _build_subprocess_kwargs,
    find_executable,
    launch,
)


class TestInvocation:
    def test_args_stored_as_tuple(self):
        invocation = Invocation("tool", ["a", "b"])  # type: ignore[arg-type]

        assert invocation.args == ("a", "b")
        assert invocation.argv == ["tool", "a", "b"]

    def test_single_string_args_rejected(self):
        with pytest.raises(TypeError):
            Invocation("tool", "a b")  # type: ignore[arg-type]

    def test_immutable(self):
        invocation = Invocation.of("tool", ["a"])

        with pytest.raises(dataclasses.FrozenInstanceError):
            invocation.executable = "other"  # type: ignore[misc]

    def test_env_copied(self):
        overrides = {"A": "1"}
        invocation = Invocation.of("tool", env=overrides)
        overrides["A"] = "2"

        assert invocation.env == {"A": "1"}

    def test_env_read_only(self):
        invocation = Invocation.of("tool", env={"A": "1"})

        with pytest.raises(TypeError):
            invocation.env["A"] = "2"  # type: ignore[index]

        assert invocation.env == {"A": "1"}

    def test_cwd_string_becomes_path(self, tmp_path: Path):
        invocation = Invocation.of("tool", cwd=str(tmp_path))

        assert invocation.cwd == tmp_path

    def test_program_name(self):
        assert Invocation.of("/usr/bin/xcrun").program_name == "xcrun"
        assert Invocation.of("pkgutil").program_name == "pkgutil"

    def test_stdin_not_in_repr(self):
        assert "secret" not in repr(Invocation.of("tool", stdin_bytes=b"secret"))


class TestBuildEnv:
    def test_no_overrides_inherits(self):
        assert Invocation.of("tool").build_env() is None

    def test_overrides_merge_over_parent(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("PROCPUMP_TEST_KEEP", "kept")

        env = Invocation.of("tool", env={"PROCPUMP_TEST_NEW": "new"}).build_env()

        assert env is not None
        assert env["PROCPUMP_TEST_KEEP"] == "kept"
        assert env["PROCPUMP_TEST_NEW"] == "new"

    def test_none_removes_variable(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("PROCPUMP_TEST_DROP", "x")

        env = Invocation.of("tool", env={"PROCPUMP_TEST_DROP": None}).build_env()

        assert env is not None
        assert "PROCPUMP_TEST_DROP" not in env


class TestSubprocessKwargs:
    def test_new_session(self):
        kwargs = _build_subprocess_kwargs(Invocation.of("tool"), new_session=True)

        if IS_WINDOWS:
            assert "creationflags" in kwargs
        else:
            assert kwargs["start_new_session"] is True

    def test_no_new_session(self):
        kwargs = _build_subprocess_kwargs(Invocation.of("tool"), new_session=False)

        assert "start_new_session" not in kwargs
        assert "creationflags" not in kwargs

    def test_cwd_passed(self, tmp_path: Path):
        kwargs = _build_subprocess_kwargs(Invocation.of("tool", cwd=tmp_path), new_session=False)

        assert kwargs["cwd"] == tmp_path


class TestLaunch:
    @pytest.mark.asyncio
    async def test_missing_executable(self):
        with pytest.raises(LaunchError) as exc_info:
            await launch(Invocation.of("/nonexistent/binary"))

        assert exc_info.value.executable == "/nonexistent/binary"
        assert isinstance(exc_info.value.__cause__, OSError)
        assert exc_info.value.errno is not None

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX execute permission")
    async def test_not_executable(self, tmp_path: Path):
        script = tmp_path / "script.sh"
        script.write_text("#!/bin/sh\necho hi\n")
        script.chmod(0o644)

        with pytest.raises(LaunchError):
            await launch(Invocation.of(str(script)))

    @pytest.mark.asyncio
    async def test_null_byte_in_argument(self):
        with pytest.raises(LaunchError):
            await launch(Invocation.of(sys.executable, ["-c", "pass\0"]))

    @pytest.mark.asyncio
    async def test_pipes_wired(self):
        process = await launch(Invocation.of(sys.executable, ["-c", "pass"]))
        try:
            assert process.stdout is not None
            assert process.stderr is not None
            assert process.stdin is None
        finally:
            await process.communicate()

    @pytest.mark.asyncio
    async def test_stdin_pipe_with_payload(self):
        process = await launch(Invocation.of(sys.executable, ["-c", "pass"], stdin_bytes=b""))
        try:
            assert process.stdin is not None
        finally:
            await process.communicate()

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX sessions")
    async def test_child_leads_own_group(self):
        process = await launch(
            Invocation.of(sys.executable, ["-c", "import time; time.sleep(5)"]),
            new_session=True,
        )
        try:
            assert os.getpgid(process.pid) == process.pid
        finally:
            process.kill()
            await process.communicate()


class TestFindExecutable:
    def test_python_by_path(self):
        assert find_executable(sys.executable) == sys.executable

    def test_missing_path(self):
        assert find_executable("/nonexistent/binary") is None

    def test_missing_name(self):
        assert find_executable("procpump-no-such-tool-xyz") is None

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX execute permission")
    def test_non_executable_file(self, tmp_path: Path):
        path = tmp_path / "data.txt"
        path.write_text("x")

        assert find_executable(str(path)) is None
