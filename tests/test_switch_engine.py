"""Tests for default-link and per-shell version switching."""

import os

import pytest

from conftest import make_installed, remote

from pynvm.core.env_manager import (
    SESSION_VAR,
    TEMP_LINK_PREFIX,
    SwitchEngine,
    SwitchError,
    bin_dir_for,
    render_shell,
)
from pynvm.core.models import EnvMutation


@pytest.fixture
def engine(config_manager, inventory):
    return SwitchEngine(config_manager.link_path, inventory)


class TestDefaultLink:

    def test_set_and_get_default(self, engine, inventory, install_root):
        make_installed(install_root, "20.1.0")
        engine.set_default(inventory.get("20.1.0"))

        assert engine.link_path.is_symlink()
        assert os.path.realpath(engine.link_path) == os.path.realpath(install_root / "v20.1.0")
        assert engine.get_default().version == "20.1.0"

    def test_repointing_replaces_link(self, engine, inventory, install_root):
        make_installed(install_root, "20.1.0")
        make_installed(install_root, "22.0.0")
        engine.set_default(inventory.get("20.1.0"))
        engine.set_default(inventory.get("22.0.0"))

        assert engine.get_default().version == "22.0.0"
        leftovers = [p for p in engine.link_path.parent.iterdir() if p.name.startswith(TEMP_LINK_PREFIX)]
        assert leftovers == []

    def test_link_is_never_missing_while_repointing(self, engine, inventory, install_root, monkeypatch):
        make_installed(install_root, "20.1.0")
        make_installed(install_root, "22.0.0")
        engine.set_default(inventory.get("20.1.0"))

        seen = []
        real_replace = os.replace

        def observing_replace(src, dst):
            seen.append(os.path.lexists(dst))
            real_replace(src, dst)

        monkeypatch.setattr("pynvm.core.env_manager.os.replace", observing_replace)
        engine.set_default(inventory.get("22.0.0"))
        assert seen == [True]

    def test_not_installed_is_rejected(self, engine):
        with pytest.raises(SwitchError):
            engine.set_default(remote("20.1.0"))
        assert not engine.link_path.is_symlink()

    def test_regular_file_at_link_path_is_not_overwritten(self, engine, inventory, install_root):
        make_installed(install_root, "20.1.0")
        engine.link_path.write_text("keep me")
        with pytest.raises(SwitchError):
            engine.set_default(inventory.get("20.1.0"))
        assert engine.link_path.read_text() == "keep me"

    def test_unset_default(self, engine, inventory, install_root):
        make_installed(install_root, "20.1.0")
        engine.set_default(inventory.get("20.1.0"))
        engine.unset_default()
        assert not engine.link_path.is_symlink()
        assert engine.get_default() is None
        assert inventory.has("20.1.0")

    def test_unset_without_link_is_a_no_op(self, engine):
        engine.unset_default()
        engine.unset_default()
        assert engine.get_default() is None

    def test_dangling_link_reads_as_none(self, engine, install_root):
        os.symlink(install_root / "v9.9.9", engine.link_path)
        assert engine.get_default() is None
        assert engine.default_target() == install_root / "v9.9.9"

    def test_default_does_not_touch_session(self, engine, inventory, install_root):
        make_installed(install_root, "20.1.0")
        environ = {"PATH": "/usr/bin"}
        engine.set_default(inventory.get("20.1.0"))
        assert engine.current_session(environ) is None


class TestSession:

    def test_set_session_prepends_bin_dir(self, engine, inventory, install_root):
        path = make_installed(install_root, "20.1.0")
        environ = {"PATH": os.pathsep.join(["/usr/local/bin", "/usr/bin"])}

        pointer = engine.set_session(inventory.get("20.1.0"), environ)

        expected_bin = bin_dir_for(str(path))
        assert pointer.version == "20.1.0"
        assert pointer.bin_dir == expected_bin
        assert pointer.mutations == (
            EnvMutation("PATH", os.pathsep.join([expected_bin, "/usr/local/bin", "/usr/bin"])),
            EnvMutation(SESSION_VAR, "20.1.0"),
        )
        assert environ == {"PATH": os.pathsep.join(["/usr/local/bin", "/usr/bin"])}

    def test_switching_session_replaces_previous_version(self, engine, inventory, install_root):
        old = make_installed(install_root, "18.0.0")
        new = make_installed(install_root, "20.1.0")
        environ = {"PATH": os.pathsep.join([bin_dir_for(str(old)), "/usr/bin"]), SESSION_VAR: "18.0.0"}

        pointer = engine.set_session(inventory.get("20.1.0"), environ)
        path_value = dict((m.name, m.value) for m in pointer.mutations)["PATH"]
        assert path_value.split(os.pathsep) == [bin_dir_for(str(new)), "/usr/bin"]

    def test_session_does_not_touch_default_link(self, engine, inventory, install_root):
        make_installed(install_root, "18.0.0")
        make_installed(install_root, "20.1.0")
        engine.set_default(inventory.get("18.0.0"))

        engine.set_session(inventory.get("20.1.0"), {"PATH": "/usr/bin"})
        assert engine.get_default().version == "18.0.0"

    def test_unset_session(self, engine, install_root):
        path = make_installed(install_root, "20.1.0")
        environ = {"PATH": os.pathsep.join([bin_dir_for(str(path)), "/usr/bin"]), SESSION_VAR: "20.1.0"}

        pointer = engine.unset_session(environ)
        assert pointer.version is None
        assert pointer.mutations == (EnvMutation("PATH", "/usr/bin"), EnvMutation(SESSION_VAR, None))

    def test_current_session(self, engine):
        assert engine.current_session({SESSION_VAR: "20.1.0"}) == "20.1.0"
        assert engine.current_session({SESSION_VAR: "v20.1.0"}) == "20.1.0"
        assert engine.current_session({SESSION_VAR: "garbage"}) is None
        assert engine.current_session({}) is None

    def test_session_requires_installed_version(self, engine):
        with pytest.raises(SwitchError):
            engine.set_session(remote("20.1.0"), {"PATH": "/usr/bin"})


class TestRenderShell:

    MUTATIONS = (EnvMutation("PATH", os.pathsep.join(["/a b/bin", "/usr/bin"])), EnvMutation(SESSION_VAR, "20.1.0"))

    def test_sh(self):
        script = render_shell(self.MUTATIONS, "sh")
        path_value = os.pathsep.join(["/a b/bin", "/usr/bin"])
        assert script == f"export PATH='{path_value}'\nexport NVM_USE=20.1.0\n"

    def test_sh_unset(self):
        assert render_shell([EnvMutation(SESSION_VAR, None)], "sh") == "unset NVM_USE\n"

    def test_fish(self):
        script = render_shell(self.MUTATIONS, "fish")
        assert script == "set -gx PATH '/a b/bin' /usr/bin\nset -gx NVM_USE 20.1.0\n"

    def test_fish_unset(self):
        assert render_shell([EnvMutation(SESSION_VAR, None)], "fish") == "set -e NVM_USE\n"

    def test_unknown_shell(self):
        with pytest.raises(SwitchError):
            render_shell(self.MUTATIONS, "powershell")
