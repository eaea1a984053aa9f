from pathlib import Path

from deckpt.config import LocalConfig
from deckpt.environment import PROFILE_BEGIN, PROFILE_END, EnvironmentConfig, remove_profile_block, write_profile


def make_local():
    return LocalConfig(prefix=Path("/home/deck/.local/share/deck-pentest"), bin_dir=Path("/home/deck/.local/bin"))


def test_for_local():
    environment = EnvironmentConfig.for_local(make_local())
    assert environment.path == ("/home/deck/.local/bin", "/home/deck/.local/share/deck-pentest/usr/bin")
    assert environment.library_path == ("/home/deck/.local/share/deck-pentest/usr/lib",)


def test_with_path_is_idempotent():
    environment = EnvironmentConfig().with_path("/a", "/b").with_path("/b", "/c")
    assert environment.path == ("/a", "/b", "/c")
    assert EnvironmentConfig().with_path("/a").with_path("/a") == EnvironmentConfig().with_path("/a")


def test_apply_prepends_missing_entries():
    environment = EnvironmentConfig(path=("/opt/tools/bin", "/usr/bin"), library_path=("/opt/tools/lib",))
    original = {"PATH": "/usr/bin:/bin", "HOME": "/home/deck"}
    applied = environment.apply(original)
    assert applied["PATH"] == "/opt/tools/bin:/usr/bin:/bin"
    assert applied["LD_LIBRARY_PATH"] == "/opt/tools/lib"
    assert applied["HOME"] == "/home/deck"
    assert original["PATH"] == "/usr/bin:/bin"
    assert environment.apply(applied) == applied


def test_exports():
    environment = EnvironmentConfig(path=("/a", "/b c"))
    assert environment.exports() == ["export PATH=/a:'/b c'\"${PATH:+:$PATH}\""]
    assert EnvironmentConfig().exports() == []


def test_write_profile_appends_block(tmp_path):
    profile = tmp_path / ".bashrc"
    profile.write_text("alias ll='ls -l'")
    environment = EnvironmentConfig(path=("/a",))
    write_profile(profile, environment)
    text = profile.read_text()
    assert text.startswith("alias ll='ls -l'\n")
    assert text.endswith(environment.render())


def test_write_profile_replaces_existing_block(tmp_path):
    profile = tmp_path / ".bashrc"
    write_profile(profile, EnvironmentConfig(path=("/old",)))
    profile.write_text(profile.read_text() + "export EDITOR=vim\n")
    write_profile(profile, EnvironmentConfig(path=("/new",)))
    text = profile.read_text()
    assert "/old" not in text
    assert "/new" in text
    assert "export EDITOR=vim\n" in text
    assert text.count(PROFILE_BEGIN) == 1
    assert text.count(PROFILE_END) == 1


def test_write_profile_dry_run(tmp_path):
    profile = tmp_path / ".bashrc"
    write_profile(profile, EnvironmentConfig(path=("/a",)), dry_run=True)
    assert not profile.exists()


def test_remove_profile_block(tmp_path):
    profile = tmp_path / ".bashrc"
    profile.write_text("export EDITOR=vim\n")
    assert not remove_profile_block(profile)
    write_profile(profile, EnvironmentConfig(path=("/a",)))
    assert remove_profile_block(profile)
    assert profile.read_text() == "export EDITOR=vim\n"
    assert not remove_profile_block(tmp_path / "missing")
