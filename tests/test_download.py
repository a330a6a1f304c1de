"""End-to-end tests for acquiring a module source."""
import sys
from concurrent.futures import ThreadPoolExecutor

import pytest

import module_source.download as download_module
from module_source.core.config import Hook, ModuleConfig
from module_source.core.errors import (
    CacheInvalidationError,
    FetchError,
    GetterError,
    HookError,
    OverlayError,
    PersistError,
    ResolutionError,
)
from module_source.download import acquire, download_module_source
from module_source.overlay import MODULE_MANIFEST_NAME
from module_source.source import SourceDescriptor, encode_source_version, process_source


@pytest.fixture
def fetch_calls(monkeypatch):
    """Record every call into the fetch backends."""
    calls = []
    original = download_module.get_any

    def counting_get_any(dest, url, getters):
        calls.append(url)
        return original(dest, url, getters)

    monkeypatch.setattr(download_module, "get_any", counting_get_any)
    return calls


@pytest.fixture
def tag_source(git_module_fixture):
    return f"git::{git_module_fixture['path']}?ref=v0.1"


def test_first_acquisition_fetches_and_marks(make_options, operator_dir, tag_source, fetch_calls):
    """No prior cache: fetch, write marker, overlay, repoint working dir."""
    options = make_options()

    result = download_module_source(tag_source, options)

    descriptor = process_source(tag_source, options)
    assert fetch_calls == [descriptor.root_source_url]
    assert descriptor.version_file.read_text() == encode_source_version(tag_source)
    assert result.working_dir == descriptor.working_dir
    assert (result.working_dir / "main.tf").exists()
    assert (result.working_dir / "terraform.tfvars").read_text() == 'name = "prod"\n'
    # The caller's options are not changed
    assert options.working_dir == operator_dir


def test_second_acquisition_skips_fetch(make_options, operator_dir, tag_source, fetch_calls):
    """Same reference again: no fetch, marker unchanged, overlay re-applied."""
    options = make_options()
    download_module_source(tag_source, options)
    descriptor = process_source(tag_source, options)
    marker = descriptor.version_file.read_text()

    (operator_dir / "terraform.tfvars").write_text('name = "staging"\n')
    result = download_module_source(tag_source, options)

    assert len(fetch_calls) == 1
    assert descriptor.version_file.read_text() == marker
    assert (result.working_dir / "terraform.tfvars").read_text() == 'name = "staging"\n'


def test_source_update_removes_cache_and_fetches(make_options, tag_source, fetch_calls):
    download_module_source(tag_source, make_options())
    descriptor = process_source(tag_source, make_options())
    sentinel = descriptor.download_dir / "stale.txt"
    sentinel.write_text("left over")

    download_module_source(tag_source, make_options(source_update=True))

    assert len(fetch_calls) == 2
    assert not sentinel.exists()
    assert descriptor.version_file.read_text() == descriptor.encode_version()


def test_changed_ref_fetches_again(make_options, git_module_fixture, tag_source, fetch_calls):
    download_module_source(tag_source, make_options())
    dev_source = f"git::{git_module_fixture['path']}?ref=dev"

    result = download_module_source(dev_source, make_options())

    assert len(fetch_calls) == 2
    assert (result.working_dir / "outputs.tf").exists()
    assert process_source(dev_source, make_options()).read_version_file() == encode_source_version(dev_source)


def test_changed_ref_drops_files_missing_from_new_ref(make_options, git_module_fixture, tag_source):
    dev_source = f"git::{git_module_fixture['path']}?ref=dev"
    first = download_module_source(dev_source, make_options())
    assert (first.working_dir / "outputs.tf").exists()

    result = download_module_source(tag_source, make_options())

    assert result.working_dir == first.working_dir
    assert not (result.working_dir / "outputs.tf").exists()
    assert (result.working_dir / "main.tf").exists()


def test_local_source_drops_deleted_files(tmp_path, make_options):
    local = tmp_path / "shared_module"
    local.mkdir()
    (local / "main.tf").write_text("# main\n")
    (local / "old.tf").write_text("# old\n")
    first = download_module_source(str(local), make_options())
    assert (first.working_dir / "old.tf").exists()

    (local / "old.tf").unlink()
    result = download_module_source(str(local), make_options())

    assert not (result.working_dir / "old.tf").exists()
    assert (result.working_dir / "main.tf").read_text() == "# main\n"


def test_refetch_restores_module_file_after_override_removed(tmp_path, make_options, operator_dir):
    local = tmp_path / "shared_module"
    local.mkdir()
    (local / "main.tf").write_text("# main\n")
    (local / "vars.tf").write_text("# module vars\n")
    (operator_dir / "vars.tf").write_text("# operator vars\n")
    first = download_module_source(str(local), make_options())
    assert (first.working_dir / "vars.tf").read_text() == "# operator vars\n"

    (operator_dir / "vars.tf").unlink()
    result = download_module_source(str(local), make_options())

    assert (result.working_dir / "vars.tf").read_text() == "# module vars\n"
    assert (result.working_dir / "terraform.tfvars").exists()


def test_changed_ref_restores_module_file_after_override_removed(
    make_options, operator_dir, git_module_fixture, tag_source
):
    (operator_dir / "main.tf").write_text("# operator main\n")
    first = download_module_source(tag_source, make_options())
    assert (first.working_dir / "main.tf").read_text() == "# operator main\n"

    (operator_dir / "main.tf").unlink()
    dev_source = f"git::{git_module_fixture['path']}?ref=dev"
    result = download_module_source(dev_source, make_options())

    assert (result.working_dir / "main.tf").read_text() == 'resource "null_resource" "root" {}\n'


def test_local_source_is_copied_every_time(make_options, operator_dir, fetch_calls):
    local = operator_dir / "local" / "mod"
    local.mkdir(parents=True)
    (local / "main.tf").write_text("# v1\n")

    download_module_source("./local/mod", make_options())
    (local / "main.tf").write_text("# v2\n")
    result = download_module_source("./local/mod", make_options())

    assert len(fetch_calls) == 2
    assert (result.working_dir / "main.tf").read_text() == "# v2\n"


def test_local_source_symlinks_become_files(make_options, local_module_fixture):
    result = download_module_source(str(local_module_fixture), make_options())

    assert (result.working_dir / "variables.tf").is_file()
    assert not (result.working_dir / "variables.tf").is_symlink()


def test_module_subdirectory(make_options, git_module_fixture):
    source = f"git::{git_module_fixture['path']}//modules/vpc?ref=v0.1"

    result = download_module_source(source, make_options())

    assert result.working_dir.parts[-2:] == ("modules", "vpc")
    assert (result.working_dir / "main.tf").read_text() == 'resource "null_resource" "vpc" {}\n'
    assert (result.working_dir / "terraform.tfvars").exists()


def test_acquire_without_source_is_noop(make_options, fetch_calls):
    options = make_options()

    assert acquire(options, ModuleConfig()) is options
    assert fetch_calls == []


def test_acquire_uses_configured_source(make_options, tag_source):
    result = acquire(make_options(), ModuleConfig(source=tag_source))

    assert (result.working_dir / "main.tf").exists()


def test_acquire_explicit_source_overrides_config(make_options, git_module_fixture):
    config = ModuleConfig(source="git::https://invalid.example/never-fetched.git")
    source = f"git::{git_module_fixture['path']}?ref=dev"

    result = acquire(make_options(source=source), config)

    assert (result.working_dir / "outputs.tf").exists()


def test_malformed_source_raises_resolution_error(make_options, fetch_calls):
    with pytest.raises(ResolutionError):
        download_module_source("hashicorp/consul/aws", make_options())
    assert fetch_calls == []


def test_download_hooks_see_synthetic_command(make_options, operator_dir, tag_source):
    config = ModuleConfig(
        before_hooks=[
            Hook(
                name="on-download",
                commands=["init-from-module"],
                execute=[sys.executable, "-c", "open('downloaded.txt', 'w').write('yes')"],
            ),
            Hook(
                name="on-plan",
                commands=["plan"],
                execute=[sys.executable, "-c", "open('planned.txt', 'w').write('yes')"],
            ),
        ]
    )
    options = make_options()

    download_module_source(tag_source, options, config)

    assert (operator_dir / "downloaded.txt").exists()
    assert not (operator_dir / "planned.txt").exists()
    assert options.command == "plan"


def test_hooks_do_not_run_on_cache_hit(make_options, operator_dir, tag_source):
    config = ModuleConfig(
        before_hooks=[
            Hook(
                name="count",
                commands=["init-from-module"],
                execute=[sys.executable, "-c", "open('hook.log', 'a').write('x')"],
            )
        ]
    )

    download_module_source(tag_source, make_options(), config)
    download_module_source(tag_source, make_options(), config)

    assert (operator_dir / "hook.log").read_text() == "x"


def test_failing_hook_raises_fetch_error(make_options, tag_source):
    config = ModuleConfig(
        before_hooks=[
            Hook(
                name="broken",
                commands=["init-from-module"],
                execute=[sys.executable, "-c", "import sys; sys.exit(1)"],
            )
        ]
    )

    with pytest.raises(FetchError) as exc_info:
        download_module_source(tag_source, make_options(), config)

    assert isinstance(exc_info.value.__cause__, HookError)
    assert not process_source(tag_source, make_options()).version_file.exists()


def test_failed_fetch_leaves_no_marker(make_options, git_module_fixture):
    source = f"git::{git_module_fixture['path']}?ref=DOES_NOT_EXIST"

    with pytest.raises(GetterError):
        download_module_source(source, make_options())

    assert not process_source(source, make_options()).version_file.exists()


def test_marker_write_failure_raises_persist_error(make_options, tag_source, monkeypatch):
    def fail(self):
        raise PersistError("disk full")

    monkeypatch.setattr(SourceDescriptor, "write_version_file", fail)

    with pytest.raises(PersistError):
        download_module_source(tag_source, make_options())


def test_overlay_failure_raises_overlay_error(make_options, tag_source, monkeypatch):
    def fail(source, dest, manifest_name):
        raise PermissionError("read-only")

    monkeypatch.setattr(download_module, "copy_folder_contents", fail)

    with pytest.raises(OverlayError) as exc_info:
        download_module_source(tag_source, make_options())

    assert isinstance(exc_info.value.__cause__, PermissionError)


def test_cache_removal_failure_raises(make_options, tag_source, monkeypatch):
    download_module_source(tag_source, make_options())

    def fail(path, *args, **kwargs):
        raise PermissionError("busy")

    monkeypatch.setattr(download_module.shutil, "rmtree", fail)

    with pytest.raises(CacheInvalidationError):
        download_module_source(tag_source, make_options(source_update=True))


def test_overlay_manifest_written_in_module_dir(make_options, tag_source):
    result = download_module_source(tag_source, make_options())

    assert (result.working_dir / MODULE_MANIFEST_NAME).exists()


def test_concurrent_acquisitions(tmp_path, make_options, tag_source):
    """Independent module directories can be acquired in parallel."""
    work_dirs = []
    for i in range(4):
        work = tmp_path / f"module-{i}"
        work.mkdir()
        (work / "terraform.tfvars").write_text(f"index = {i}\n")
        work_dirs.append(work)

    def run(work):
        return download_module_source(tag_source, make_options(working_dir=work))

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(run, work_dirs))

    assert len({r.working_dir for r in results}) == 4
    for i, result in enumerate(results):
        assert (result.working_dir / "main.tf").exists()
        assert (result.working_dir / "terraform.tfvars").read_text() == f"index = {i}\n"
