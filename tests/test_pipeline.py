"""Tests for the run pipeline, driven through a recording backend."""

from __future__ import annotations

import hashlib
import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from contenant.config import (
    BridgeConfig,
    Config,
    ConfigSource,
    Mount,
    StackedConfig,
)
from contenant.errors import ContainerSignalError, ImageBuildError
from contenant.generator import image_hash
from contenant.pipeline import Contenant, project_id


class FakeBackend:
    """Records every backend call; optionally fails a build or returns a code."""

    def __init__(
        self,
        returncode: int = 0,
        fail_build: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> None:
        self.calls: list[tuple] = []
        self.returncode = returncode
        self.fail_build = fail_build
        self.labels = labels or {}

    def build(self, image, context, build_args=None) -> None:
        self.calls.append(("build", image, context, dict(build_args or {})))
        if image == self.fail_build:
            raise ImageBuildError(f"Failed to build {image}")

    def tag(self, source, target) -> None:
        self.calls.append(("tag", source, target))

    def image_label(self, image, label) -> str | None:
        return self.labels.get(image) if label == "contenant.hash" else None

    def run(self, image, mounts, env, args, workdir) -> int:
        self.calls.append(("run", image, list(mounts), dict(env), list(args), workdir))
        if self.returncode < 0:
            raise ContainerSignalError(-self.returncode)
        return self.returncode

    def ops(self) -> list[tuple[str, str]]:
        return [(call[0], call[1]) for call in self.calls]

    def run_call(self) -> tuple:
        return next(call for call in self.calls if call[0] == "run")


def _stacked(app_dirs, *configs: tuple[ConfigSource, Config]) -> StackedConfig:
    stacked = StackedConfig()
    for source, config in configs:
        if source == ConfigSource.USER:
            directory = app_dirs.config_home
        else:
            directory = Path("/proj/.contenant")
        stacked.add_layer(source, config, directory)
    return stacked


def _contenant(app_dirs, project_dir, backend, config) -> Contenant:
    return Contenant(project_dir, backend=backend, app_dirs=app_dirs, config=config)


def _allowlist_file():
    handle = tempfile.NamedTemporaryFile(mode="w", prefix="contenant-allowed-ips-")
    handle.write("1.2.3.4/32\n")
    handle.flush()
    return handle


@pytest.fixture
def no_network():
    with patch("contenant.pipeline.resolve_allowed_ips", side_effect=lambda _: _allowlist_file()):
        yield


class TestProjectId:
    """Tests for project_id."""

    def test_format(self) -> None:
        path = Path("/home/user/projects/my-app")
        expected = hashlib.sha256(b"/home/user/projects/my-app").hexdigest()[:8]
        assert project_id(path) == f"{expected}-my-app"

    def test_same_name_different_location(self) -> None:
        a = project_id(Path("/work/app"))
        b = project_id(Path("/play/app"))
        assert a != b
        assert a.endswith("-app") and b.endswith("-app")


class TestBuildImages:
    """Tests for the image chain."""

    def test_base_tagged_as_user_without_dockerfiles(self, app_dirs, project_dir) -> None:
        backend = FakeBackend()
        pipeline = _contenant(app_dirs, project_dir, backend, StackedConfig())

        image = pipeline.build_images()

        assert image == "contenant:user"
        assert backend.ops() == [("build", "contenant:base"), ("tag", "contenant:base")]
        assert backend.calls[1] == ("tag", "contenant:base", "contenant:user")

    def test_base_build_context_written(self, app_dirs, project_dir) -> None:
        backend = FakeBackend()
        _contenant(app_dirs, project_dir, backend, StackedConfig()).build_images()

        _, _, context, build_args = backend.calls[0]
        assert context == app_dirs.cache_home
        assert (context / "Dockerfile").is_file()
        assert (context / "entrypoint.sh").is_file()
        assert "IMAGE_HASH" in build_args
        assert "CLAUDE_VERSION" not in build_args

    def test_claude_version_passed_as_build_arg(self, app_dirs, project_dir) -> None:
        backend = FakeBackend()
        user = Config.from_dict({"claude": {"version": "1.0.58"}})
        config = _stacked(app_dirs, (ConfigSource.USER, user))
        _contenant(app_dirs, project_dir, backend, config).build_images()

        assert backend.calls[0][3]["CLAUDE_VERSION"] == "1.0.58"

    def test_user_dockerfile_built(self, app_dirs, project_dir) -> None:
        app_dirs.config_home.mkdir(parents=True)
        app_dirs.user_dockerfile.write_text("FROM contenant:base\n")
        backend = FakeBackend()

        image = _contenant(app_dirs, project_dir, backend, StackedConfig()).build_images()

        assert image == "contenant:user"
        assert backend.ops() == [("build", "contenant:base"), ("build", "contenant:user")]
        assert backend.calls[1][2] == app_dirs.config_home

    def test_project_dockerfile_built_and_used(self, app_dirs, project_dir) -> None:
        override = project_dir / ".contenant"
        override.mkdir()
        (override / "Dockerfile").write_text("FROM contenant:user\n")
        backend = FakeBackend()
        pipeline = _contenant(app_dirs, project_dir, backend, StackedConfig())

        image = pipeline.build_images()

        assert image == pipeline.project_image
        assert image == f"contenant:{project_id(pipeline.project_dir)}"
        assert backend.ops()[-1] == ("build", image)
        assert backend.calls[-1][2] == pipeline.project_dir / ".contenant"

    def test_current_base_not_rebuilt(self, app_dirs, project_dir) -> None:
        backend = FakeBackend(labels={"contenant:base": image_hash()})

        image = _contenant(app_dirs, project_dir, backend, StackedConfig()).build_images()

        assert image == "contenant:user"
        assert backend.ops() == [("tag", "contenant:base")]

    def test_stale_base_rebuilt(self, app_dirs, project_dir) -> None:
        backend = FakeBackend(labels={"contenant:base": "0123456789ab"})

        _contenant(app_dirs, project_dir, backend, StackedConfig()).build_images()

        assert backend.ops()[0] == ("build", "contenant:base")
        assert backend.calls[0][3]["IMAGE_HASH"] == image_hash()

    def test_version_change_rebuilds_base(self, app_dirs, project_dir) -> None:
        backend = FakeBackend(labels={"contenant:base": image_hash()})
        user = Config.from_dict({"claude": {"version": "1.0.58"}})
        config = _stacked(app_dirs, (ConfigSource.USER, user))

        _contenant(app_dirs, project_dir, backend, config).build_images()

        assert backend.ops()[0] == ("build", "contenant:base")
        assert backend.calls[0][3]["IMAGE_HASH"] == image_hash("1.0.58")

    def test_base_failure_stops_chain(self, app_dirs, project_dir) -> None:
        backend = FakeBackend(fail_build="contenant:base")
        pipeline = _contenant(app_dirs, project_dir, backend, StackedConfig())

        with pytest.raises(ImageBuildError):
            pipeline.build_images()
        assert backend.ops() == [("build", "contenant:base")]


class TestMounts:
    """Tests for mount assembly."""

    def test_default_mounts(self, app_dirs, project_dir) -> None:
        pipeline = _contenant(app_dirs, project_dir, FakeBackend(), StackedConfig())

        mounts = pipeline.default_mounts()

        known_hosts = app_dirs.state_home / "ssh" / "known_hosts"
        assert mounts == [
            f"{app_dirs.state_home / 'claude'}:/home/claude/.claude",
            f"{known_hosts}:/home/claude/.ssh/known_hosts",
        ]
        assert known_hosts.is_file()
        assert (app_dirs.state_home / "claude").is_dir()

    def test_skills_mounted_when_present(self, app_dirs, project_dir) -> None:
        app_dirs.skills_dir.mkdir(parents=True)
        pipeline = _contenant(app_dirs, project_dir, FakeBackend(), StackedConfig())

        assert f"{app_dirs.skills_dir}:/home/claude/.claude/skills" in pipeline.default_mounts()

    def test_existing_known_hosts_kept(self, app_dirs, project_dir) -> None:
        known_hosts = app_dirs.place_state_file("ssh/known_hosts")
        known_hosts.write_text("github.com ssh-ed25519 AAAA\n")
        _contenant(app_dirs, project_dir, FakeBackend(), StackedConfig()).default_mounts()

        assert known_hosts.read_text() == "github.com ssh-ed25519 AAAA\n"

    def test_configured_mounts_follow_defaults_in_layer_order(self, app_dirs, project_dir) -> None:
        user = Config(mounts=[Mount("~/.gitconfig", "/home/claude/.gitconfig", readonly=True)])
        project = Config(mounts=[Mount("data", "/data")])
        config = _stacked(app_dirs, (ConfigSource.PROJECT, project), (ConfigSource.USER, user))
        pipeline = _contenant(app_dirs, project_dir, FakeBackend(), config)

        mounts = pipeline.mounts()

        assert len(mounts) == 4
        assert mounts[2] == f"{Path.home()}/.gitconfig:/home/claude/.gitconfig:ro"
        assert mounts[3] == "/proj/.contenant/data:/data"


class TestEnv:
    """Tests for environment assembly."""

    def test_bridge_url_always_set(self, app_dirs, project_dir) -> None:
        pipeline = _contenant(app_dirs, project_dir, FakeBackend(), StackedConfig())

        assert pipeline.env() == {"CONTENANT_BRIDGE_URL": "http://host.docker.internal:19432"}

    def test_bridge_port_from_config(self, app_dirs, project_dir) -> None:
        config = _stacked(app_dirs, (ConfigSource.PROJECT, Config(bridge=BridgeConfig(port=8080))))
        pipeline = _contenant(app_dirs, project_dir, FakeBackend(), config)

        assert pipeline.env()["CONTENANT_BRIDGE_URL"] == "http://host.docker.internal:8080"

    def test_tilde_expanded_against_container_home(self, app_dirs, project_dir) -> None:
        config = _stacked(
            app_dirs,
            (ConfigSource.USER, Config(env={"NOTES": "~/notes", "HOMEDIR": "~", "PLAIN": "a~b"})),
        )
        pipeline = _contenant(app_dirs, project_dir, FakeBackend(), config)

        env = pipeline.env()

        assert env["NOTES"] == "/home/claude/notes"
        assert env["HOMEDIR"] == "/home/claude"
        assert env["PLAIN"] == "a~b"


class TestRun:
    """Tests for the full run."""

    def test_exit_code_passed_through(self, app_dirs, project_dir, no_network) -> None:
        backend = FakeBackend(returncode=3)
        pipeline = _contenant(app_dirs, project_dir, backend, StackedConfig())

        assert pipeline.run(["--print", "hi"]) == 3

        _, image, mounts, env, args, workdir = backend.run_call()
        assert image == "contenant:user"
        assert args == ["--print", "hi"]
        assert workdir == Path(os.path.realpath(project_dir))
        assert "CONTENANT_BRIDGE_URL" in env
        assert mounts[-1].endswith(":/etc/contenant/allowed-ips:ro")

    def test_allowlist_file_alive_during_run(self, app_dirs, project_dir, no_network) -> None:
        seen = {}

        class Inspecting(FakeBackend):
            def run(self, image, mounts, env, args, workdir) -> int:
                path = mounts[-1].split(":")[0]
                seen["content"] = Path(path).read_text()
                seen["path"] = path
                return 0

        _contenant(app_dirs, project_dir, Inspecting(), StackedConfig()).run()

        assert seen["content"] == "1.2.3.4/32\n"
        assert not os.path.exists(seen["path"])

    def test_build_failure_never_runs(self, app_dirs, project_dir, no_network) -> None:
        backend = FakeBackend(fail_build="contenant:base")
        pipeline = _contenant(app_dirs, project_dir, backend, StackedConfig())

        with pytest.raises(ImageBuildError):
            pipeline.run()
        assert "run" not in [op for op, _ in backend.ops()]

    def test_configured_domains_resolved(self, app_dirs, project_dir) -> None:
        project = Config.from_dict({"network": {"allowed_domains": ["pypi.org"]}})
        config = _stacked(app_dirs, (ConfigSource.PROJECT, project))
        with patch(
            "contenant.pipeline.resolve_allowed_ips", side_effect=lambda _: _allowlist_file()
        ) as mock_resolve:
            _contenant(app_dirs, project_dir, FakeBackend(), config).run()

        domains = mock_resolve.call_args[0][0]
        assert "pypi.org" in domains
        assert "api.anthropic.com" in domains

    def test_signal_propagates(self, app_dirs, project_dir, no_network) -> None:
        pipeline = _contenant(app_dirs, project_dir, FakeBackend(returncode=-15), StackedConfig())

        with pytest.raises(ContainerSignalError):
            pipeline.run()
