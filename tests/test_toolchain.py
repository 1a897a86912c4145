import subprocess
from pathlib import Path
from typing import Any

import pytest

from layerchef.errors import CompileError, DependencyBuildError, ValidationError
from layerchef.recipe import plan_recipe
from layerchef.scan import scan_manifests
from layerchef.toolchain import (
    AptInstaller,
    ApplicationBuildRequest,
    CargoToolchain,
    DependencyBuildRequest,
    InProcessToolchain,
    PreinstalledPackages,
    classify_dependency_failure,
    forget_local_packages,
    get_installer,
    get_toolchain,
)


@pytest.mark.parametrize(
    ("stderr", "kind"),
    [
        ("thread 'main' panicked: Unable to find libclang", "missing_system_library"),
        ("fatal error: openssl/ssl.h: No such file or directory", "missing_system_library"),
        ("The pkg-config command could not be found.", "missing_system_library"),
        ("error[E0308]: mismatched types", "compile_failed"),
    ],
)
def test_dependency_failures_are_classified(stderr: str, kind: str) -> None:
    assert classify_dependency_failure(stderr) == kind


def test_forget_local_packages_keeps_external_dependencies(tmp_path: Path) -> None:
    profile_dir = tmp_path / "release"
    files = (
        ".fingerprint/reth-net-0123456789abcdef/lib-reth_net",
        ".fingerprint/serde-4567456745674567/lib-serde",
        "deps/libreth_net-0123456789abcdef.rlib",
        "deps/reth_net-0123456789abcdef.d",
        "deps/libserde-4567456745674567.rlib",
        "build/reth-net-89ab89ab89ab89ab/output",
        "reth-net.d",
        "libreth_net.rlib",
    )
    for relative in files:
        path = profile_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("x", encoding="utf-8")

    forget_local_packages(profile_dir, ("reth-net",))

    remaining = sorted(
        path.relative_to(profile_dir).as_posix()
        for path in profile_dir.rglob("*")
        if path.is_file()
    )
    assert remaining == [
        ".fingerprint/serde-4567456745674567/lib-serde",
        "deps/libserde-4567456745674567.rlib",
    ]


def test_forget_local_packages_spares_crates_sharing_a_name_prefix(tmp_path: Path) -> None:
    profile_dir = tmp_path / "debug"
    files = (
        ".fingerprint/foo-0011223344556677/lib-foo",
        ".fingerprint/foo-sys-fedcba9876543210/lib-foo_sys",
        "build/foo-sys-fedcba9876543210/output",
        "build/foo-sys-0a0a0a0a0a0a0a0a/build-script-build",
        "deps/libfoo-0011223344556677.rlib",
        "deps/libfoo_sys-fedcba9876543210.rlib",
        "deps/foo_sys-fedcba9876543210.d",
        "foo",
        "libfoo_sys.rlib",
    )
    for relative in files:
        path = profile_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("x", encoding="utf-8")

    forget_local_packages(profile_dir, ("foo",))

    remaining = sorted(
        path.relative_to(profile_dir).as_posix()
        for path in profile_dir.rglob("*")
        if path.is_file()
    )
    assert remaining == [
        ".fingerprint/foo-sys-fedcba9876543210/lib-foo_sys",
        "build/foo-sys-0a0a0a0a0a0a0a0a/build-script-build",
        "build/foo-sys-fedcba9876543210/output",
        "deps/foo_sys-fedcba9876543210.d",
        "deps/libfoo_sys-fedcba9876543210.rlib",
        "libfoo_sys.rlib",
    ]


def test_forget_local_packages_keeps_cargo_directories(tmp_path: Path) -> None:
    profile_dir = tmp_path / "release"
    (profile_dir / "build/openssl-sys-1111222233334444").mkdir(parents=True)
    (profile_dir / "build/openssl-sys-1111222233334444/output").write_text("x", encoding="utf-8")

    forget_local_packages(profile_dir, ("build",))

    assert (profile_dir / "build/openssl-sys-1111222233334444/output").is_file()


def test_factories_reject_unknown_names() -> None:
    assert isinstance(get_toolchain("cargo"), CargoToolchain)
    assert isinstance(get_installer("apt"), AptInstaller)
    with pytest.raises(ValidationError):
        get_toolchain("bazel")
    with pytest.raises(ValidationError):
        get_installer("brew")


def test_cargo_version_without_rustc() -> None:
    toolchain = CargoToolchain(rustc="layerchef-test-missing-rustc")

    with pytest.raises(ValidationError, match="not available"):
        toolchain.version()


def test_apt_installer_without_apt_reports_missing_library() -> None:
    installer = AptInstaller(
        apt_get="layerchef-test-missing-apt-get",
        dpkg_query="layerchef-test-missing-dpkg-query",
    )

    with pytest.raises(DependencyBuildError) as exc_info:
        installer.ensure(("libclang-dev",))

    assert exc_info.value.kind == "missing_system_library"


def test_preinstalled_packages() -> None:
    assert PreinstalledPackages().ensure(("libclang-dev",)) == ()
    assert PreinstalledPackages(available=frozenset({"pkg-config"})).ensure(("pkg-config",)) == ()
    with pytest.raises(DependencyBuildError):
        PreinstalledPackages(available=frozenset()).ensure(("pkg-config",))


def test_inprocess_application_build_requires_dependencies(
    tmp_path: Path,
    workspace: Path,
) -> None:
    request = ApplicationBuildRequest(
        source_root=workspace,
        target_dir=tmp_path / "target",
        profile="release",
        binary="reth",
        jobs=1,
    )

    with pytest.raises(CompileError, match="no compiled dependencies"):
        InProcessToolchain().build_application(request)


class _RecordingRun:
    def __init__(self, returncode: int = 0, stderr: str = "") -> None:
        self.returncode = returncode
        self.stderr = stderr
        self.calls: list[tuple[list[str], dict[str, Any]]] = []

    def __call__(self, args: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        self.calls.append((args, kwargs))
        return subprocess.CompletedProcess(args, self.returncode, "", self.stderr)


def _dependency_request(tmp_path: Path, workspace: Path, profile: str) -> DependencyBuildRequest:
    return DependencyBuildRequest(
        recipe=plan_recipe(scan_manifests(workspace)),
        skeleton_dir=tmp_path / "skeleton",
        target_dir=tmp_path / "target",
        profile=profile,
        jobs=3,
        env={"CARGO_NET_OFFLINE": "true"},
    )


def test_cargo_dependency_build_command(
    tmp_path: Path,
    workspace: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    run = _RecordingRun()
    monkeypatch.setattr("layerchef.toolchain.cargo.subprocess.run", run)
    request = _dependency_request(tmp_path, workspace, "debug")
    stale = request.target_dir / "debug/.fingerprint/reth-net-0123456789abcdef/lib-reth_net"
    stale.parent.mkdir(parents=True)
    stale.write_text("x", encoding="utf-8")

    CargoToolchain().build_dependencies(request)

    [(args, kwargs)] = run.calls
    assert args == [
        "cargo",
        "build",
        "--profile",
        "dev",
        "--locked",
        "--jobs",
        "3",
        "--manifest-path",
        str(tmp_path / "skeleton" / "Cargo.toml"),
    ]
    assert kwargs["cwd"] == str(tmp_path / "skeleton")
    assert kwargs["env"]["CARGO_TARGET_DIR"] == str(tmp_path / "target")
    assert kwargs["env"]["CARGO_NET_OFFLINE"] == "true"
    assert kwargs["check"] is False
    assert not stale.exists()


@pytest.mark.parametrize(
    ("stderr", "kind"),
    [
        ("failed to run custom build command\nUnable to find libclang", "missing_system_library"),
        ("error[E0425]: cannot find value `x` in this scope", "compile_failed"),
    ],
)
def test_cargo_dependency_build_failure_kind(
    tmp_path: Path,
    workspace: Path,
    monkeypatch: pytest.MonkeyPatch,
    stderr: str,
    kind: str,
) -> None:
    monkeypatch.setattr(
        "layerchef.toolchain.cargo.subprocess.run",
        _RecordingRun(returncode=101, stderr=stderr),
    )

    with pytest.raises(DependencyBuildError) as exc_info:
        CargoToolchain().build_dependencies(_dependency_request(tmp_path, workspace, "release"))

    assert exc_info.value.kind == kind
    assert exc_info.value.context["returncode"] == "101"
    assert "--profile release" in exc_info.value.context["command"]


def test_cargo_application_build_returns_binary_path(
    tmp_path: Path,
    workspace: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    run = _RecordingRun()
    monkeypatch.setattr("layerchef.toolchain.cargo.subprocess.run", run)
    request = ApplicationBuildRequest(
        source_root=workspace,
        target_dir=tmp_path / "target",
        profile="release",
        binary="reth",
        jobs=2,
    )

    binary = CargoToolchain(cargo="/opt/rust/bin/cargo").build_application(request)

    assert binary == tmp_path / "target" / "release" / "reth"
    [(args, kwargs)] = run.calls
    assert args[:4] == ["/opt/rust/bin/cargo", "build", "--profile", "release"]
    assert "--locked" in args
    assert args[args.index("--bin") + 1] == "reth"
    assert args[args.index("--manifest-path") + 1] == str(workspace / "Cargo.toml")
    assert kwargs["env"]["CARGO_TARGET_DIR"] == str(tmp_path / "target")


def test_cargo_application_build_failure_is_compile_error(
    tmp_path: Path,
    workspace: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(
        "layerchef.toolchain.cargo.subprocess.run",
        _RecordingRun(returncode=101, stderr="error[E0308]: mismatched types"),
    )
    request = ApplicationBuildRequest(
        source_root=workspace,
        target_dir=tmp_path / "target",
        profile="debug",
        binary="reth",
        jobs=1,
    )

    with pytest.raises(CompileError) as exc_info:
        CargoToolchain().build_application(request)

    assert "mismatched types" in exc_info.value.context["stderr"]
    assert exc_info.value.stage == "compile"


def test_cargo_missing_binary_is_reported(
    tmp_path: Path,
    workspace: Path,
) -> None:
    toolchain = CargoToolchain(cargo=str(tmp_path / "no-such-cargo"))

    with pytest.raises(DependencyBuildError) as exc_info:
        toolchain.build_dependencies(_dependency_request(tmp_path, workspace, "release"))

    assert exc_info.value.kind == "missing_system_library"
