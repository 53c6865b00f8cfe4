"""Profile accumulation, command expressions and the setup script contents."""

import pytest

import yakuake_session
from yakuake_ipc import YakuakeSessionError
from yakuake_session import (
    InvocationRequest,
    ProfileSettings,
    build_command,
    render_setup_script,
    resolve_command,
    shell_quote,
    write_setup_script,
)


class TestShellQuote:
    def test_plain(self):
        assert shell_quote("/tmp") == "'/tmp'"

    def test_spaces(self):
        assert shell_quote("/home/me/My Documents") == "'/home/me/My Documents'"

    def test_single_quote(self):
        assert shell_quote("it's") == "'it'\\''s'"


class TestProfileSettings:
    def test_empty_is_noop(self, monkeypatch):
        monkeypatch.setattr(yakuake_session.shutil, "which", lambda name: "/usr/bin/" + name)
        assert ProfileSettings().build_setup_line() == "true"

    def test_joined_in_order(self, monkeypatch):
        monkeypatch.setattr(yakuake_session.shutil, "which", lambda name: "/usr/bin/" + name)
        profile = ProfileSettings()
        profile.add("a=1")
        profile.add("b=2")
        assert profile.joined == "a=1;b=2"
        assert profile.build_setup_line() == "konsoleprofile 'a=1;b=2'"

    def test_tool_missing_is_noop(self, which_without_profile_tool):
        profile = ProfileSettings(["ColorScheme=Solarized"])
        assert profile.build_setup_line() == "true"


class TestBuildCommand:
    def test_exec_without_hold(self):
        assert build_command("ls", ["-la"], hold=False) == "exec 'ls' -la"

    def test_no_exec_with_hold(self):
        assert build_command("ls", ["-la"], hold=True) == "'ls' -la"

    def test_no_arguments(self):
        assert build_command("htop", [], hold=False) == "exec 'htop'"

    def test_no_command_is_noop(self):
        assert build_command(None, [], hold=False) == "true"
        assert build_command(None, [], hold=True) == "true"


class TestResolveCommand:
    def test_found(self, which_without_profile_tool):
        request = InvocationRequest(workdir="/", command="ls", command_args=["-la"])
        assert resolve_command(request) == "exec 'ls' -la"

    def test_not_found(self, which_without_profile_tool):
        request = InvocationRequest(workdir="/", command="missing-tool")
        with pytest.raises(YakuakeSessionError) as exc:
            resolve_command(request)
        assert exc.value.status == 127

    def test_no_command(self, which_without_profile_tool):
        assert resolve_command(InvocationRequest(workdir="/")) == "true"


class TestSetupScript:
    def test_render(self):
        script = render_setup_script("true", "/srv/my dir", "exec 'ls' -la", "/tmp/x.sh")
        assert script.splitlines() == [
            "clear",
            "true && cd '/srv/my dir' && exec 'ls' -la",
            "rm -f '/tmp/x.sh'",
        ]

    def test_write(self, isolated, which_without_profile_tool):
        request = InvocationRequest(workdir="/srv", profile=ProfileSettings(["a=1"]))
        path = write_setup_script(request, "true")
        assert path.parent == isolated
        assert path.name.startswith("yakuake-session-")
        assert path.read_text().splitlines() == [
            "clear",
            "true && cd '/srv' && true",
            f"rm -f '{path}'",
        ]

    def test_missing_directory_is_session_error(self, tmp_path, which_without_profile_tool):
        request = InvocationRequest(workdir="/srv")
        with pytest.raises(YakuakeSessionError) as exc:
            write_setup_script(request, "true", directory=str(tmp_path / "gone"))
        assert exc.value.status == 1

    def test_unique_names(self, which_without_profile_tool):
        request = InvocationRequest(workdir="/srv")
        assert write_setup_script(request, "true") != write_setup_script(request, "true")

    def test_profile_line_first(self, monkeypatch):
        monkeypatch.setattr(yakuake_session.shutil, "which", lambda name: "/usr/bin/" + name)
        request = InvocationRequest(workdir="/srv", profile=ProfileSettings(["a=1", "b=2"]))
        path = write_setup_script(request, "'vim'")
        assert path.read_text().splitlines()[1] == "konsoleprofile 'a=1;b=2' && cd '/srv' && 'vim'"
