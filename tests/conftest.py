"""Pytest fixtures for module-source tests."""
import subprocess
from pathlib import Path
from typing import Dict

import pytest

from module_source.core.options import Options


def _git(repo_path: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=repo_path,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


@pytest.fixture
def git_module_fixture(tmp_path: Path) -> Dict[str, any]:
    """Create a git repository holding a small module tree.

    Layout at tag v0.1:
        main.tf
        modules/vpc/main.tf

    Branch dev adds outputs.tf.

    Returns dict with:
        - path: Path to repo
        - tag_sha: SHA of v0.1 tag
        - dev_sha: SHA of dev branch
    """
    repo_path = tmp_path / "module_repo"
    repo_path.mkdir()

    _git(repo_path, "init")
    _git(repo_path, "config", "user.email", "test@example.com")
    _git(repo_path, "config", "user.name", "Test User")

    (repo_path / "main.tf").write_text('resource "null_resource" "root" {}\n')
    vpc_dir = repo_path / "modules" / "vpc"
    vpc_dir.mkdir(parents=True)
    (vpc_dir / "main.tf").write_text('resource "null_resource" "vpc" {}\n')

    _git(repo_path, "add", ".")
    _git(repo_path, "commit", "-m", "Initial module")
    tag_sha = _git(repo_path, "rev-parse", "HEAD")
    _git(repo_path, "tag", "v0.1")

    _git(repo_path, "checkout", "-b", "dev")
    (repo_path / "outputs.tf").write_text('output "id" { value = "dev" }\n')
    _git(repo_path, "add", "outputs.tf")
    _git(repo_path, "commit", "-m", "Add outputs on dev")
    dev_sha = _git(repo_path, "rev-parse", "HEAD")

    return {
        "path": repo_path,
        "tag_sha": tag_sha,
        "dev_sha": dev_sha,
    }


@pytest.fixture
def local_module_fixture(tmp_path: Path) -> Path:
    """A plain directory module with a configuration file and a symlink."""
    module_path = tmp_path / "local_module"
    module_path.mkdir()
    (module_path / "main.tf").write_text('variable "name" {}\n')
    (module_path / "variables.tf").symlink_to(module_path / "main.tf")
    return module_path


@pytest.fixture
def operator_dir(tmp_path: Path) -> Path:
    """The operator's working directory with a locally authored file."""
    work = tmp_path / "live"
    work.mkdir()
    (work / "terraform.tfvars").write_text('name = "prod"\n')
    return work


@pytest.fixture
def make_options(tmp_path: Path, operator_dir: Path):
    """Factory for Options rooted at operator_dir with a separate cache root."""

    def _make(**overrides) -> Options:
        values = {
            "working_dir": operator_dir,
            "download_dir": tmp_path / "cache",
        }
        values.update(overrides)
        return Options(**values)

    return _make
