"""Tests for cloning and walking repositories."""

import subprocess
from unittest.mock import MagicMock

import pytest

from vibeplan.config import WorkspaceSettings
from vibeplan.errors import CloneError
from vibeplan.repository import (
    READ_FAILURE_DESCRIPTION,
    RepositoryFetcher,
    analyze_repository,
    repo_name_from_url,
    walk_repository,
)


class TestWalkRepository:
    def test_order_and_skips(self, sample_repo_path):
        paths = [p.relative_to(sample_repo_path).as_posix() for p in walk_repository(sample_repo_path)]
        assert paths == [
            "README.md",
            "app/main.py",
            "package.json",
            "src/cycle/a.ts",
            "src/cycle/b.ts",
            "src/index.ts",
            "src/services/userService.ts",
            "src/utils/helper.ts",
        ]

    def test_unlisted_extensions_ignored(self, temp_dir):
        (temp_dir / "image.png").write_bytes(b"\x89PNG")
        (temp_dir / "notes.txt").write_text("hello")
        (temp_dir / "main.go").write_text("package main\n")
        assert [p.name for p in walk_repository(temp_dir)] == ["main.go"]

    def test_symlinks_not_followed(self, temp_dir):
        secret = temp_dir / "outside" / "credentials.json"
        secret.parent.mkdir()
        secret.write_text('{"password": "hunter2"}')
        root = temp_dir / "repo"
        (root / "src").mkdir(parents=True)
        (root / "src" / "app.ts").write_text("export const x = 1;\n")
        (root / "leak.json").symlink_to(secret)
        (root / "src" / "loop").symlink_to(root, target_is_directory=True)

        paths = [p.relative_to(root).as_posix() for p in walk_repository(root)]
        assert paths == ["src/app.ts"]

        analysis = analyze_repository(root, "https://example.com/a/b", "main")
        assert [f.path for f in analysis.files] == ["src/app.ts"]
        assert all("hunter2" not in f.content for f in analysis.files)


class TestAnalyzeRepository:
    def test_stats_and_names(self, sample_repo_path):
        analysis = analyze_repository(sample_repo_path, "https://github.com/acme/sample_repo.git", "dev")
        assert analysis.repo_name == "sample_repo"
        assert analysis.repo_url == "https://github.com/acme/sample_repo"
        assert analysis.branch == "dev"
        assert analysis.stats.total_files == 8
        assert analysis.stats.code_files == 6
        assert "node_modules" in analysis.stats.skipped_dirs

    def test_unreadable_file_is_kept(self, temp_dir):
        (temp_dir / "bad.ts").write_bytes(b"\xff\xfe\x00broken")
        analysis = analyze_repository(temp_dir, "https://example.com/a/b", "main")
        assert len(analysis.files) == 1
        assert analysis.files[0].description == READ_FAILURE_DESCRIPTION
        assert analysis.files[0].language == "typescript"

    def test_repo_name_from_url(self):
        assert repo_name_from_url("https://github.com/acme/shop.git/") == "shop"
        assert repo_name_from_url("") == "unknown"


class TestRepositoryFetcher:
    """git is replaced by a subprocess double."""

    def test_clone_command(self, temp_dir, monkeypatch):
        run = MagicMock(return_value=subprocess.CompletedProcess([], 0, "", ""))
        monkeypatch.setattr("vibeplan.repository.subprocess.run", run)

        target = RepositoryFetcher(temp_dir).clone("https://github.com/acme/shop", "dev")

        cmd = run.call_args.args[0]
        assert cmd[:6] == ["git", "clone", "--depth", "1", "--branch", "dev"]
        assert cmd[-1] == str(target)
        assert target.parent == temp_dir

    def test_clone_failure_removes_target(self, temp_dir, monkeypatch):
        run = MagicMock(return_value=subprocess.CompletedProcess([], 128, "", "fatal: not found"))
        monkeypatch.setattr("vibeplan.repository.subprocess.run", run)

        with pytest.raises(CloneError, match="fatal: not found"):
            RepositoryFetcher(temp_dir).clone("https://github.com/acme/missing")
        assert list(temp_dir.iterdir()) == []

    def test_clone_timeout(self, temp_dir, monkeypatch):
        def slow(*args, **kwargs):
            raise subprocess.TimeoutExpired("git", 1)

        monkeypatch.setattr("vibeplan.repository.subprocess.run", slow)
        with pytest.raises(CloneError):
            RepositoryFetcher(temp_dir).clone("https://github.com/acme/slow")

    def test_keep_clones(self, temp_dir):
        clone = temp_dir / "repo_x"
        clone.mkdir()
        RepositoryFetcher(temp_dir, WorkspaceSettings(keep_clones=True)).cleanup(clone)
        assert clone.exists()
        RepositoryFetcher(temp_dir).cleanup(clone)
        assert not clone.exists()
