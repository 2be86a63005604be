"""Tests for timemachine.extraction.snapshot."""

from __future__ import annotations

from pathlib import Path

from conftest import GitRepo
from timemachine.extraction.snapshot import (
    MAX_FILE_CHARS,
    MAX_SNAPSHOT_FILES,
    collect_snapshot,
    is_eligible_file,
    is_key_file,
    is_text_content,
    list_repository_files,
    select_snapshot_files,
)


def _write(root: Path, rel_path: str, content: str | bytes) -> None:
    target = root / rel_path
    target.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        target.write_bytes(content)
    else:
        target.write_text(content)


class TestEligibility:
    def test_source_extensions(self):
        assert is_eligible_file("src/app.py")
        assert is_eligible_file("web/components/Button.tsx")
        assert not is_eligible_file("assets/logo.png")

    def test_config_names(self):
        assert is_eligible_file("package.json")
        assert is_eligible_file("README")
        assert is_eligible_file("pyproject.toml")
        assert is_eligible_file("Dockerfile")
        assert is_eligible_file("Makefile")

    def test_denylisted_directories(self):
        assert not is_eligible_file("node_modules/lodash/index.js")
        assert not is_eligible_file("dist/bundle.js")
        assert not is_eligible_file("vendor/github.com/x/y.go")

    def test_key_files(self):
        assert is_key_file("README.md")
        assert is_key_file("src/main.go")
        assert is_key_file("src/config.py")
        assert not is_key_file("config/settings.py")
        assert not is_key_file("src/utils.py")


class TestTextHeuristic:
    def test_plain_text(self):
        assert is_text_content("def f():\n\treturn 1\n")

    def test_empty_is_text(self):
        assert is_text_content("")

    def test_control_heavy_rejected(self):
        assert not is_text_content("\x00\x01\x02abcdefg")

    def test_just_under_threshold(self):
        # 1 control char in 11 is under 10%
        assert is_text_content("\x00" + "a" * 10)
        # 1 in 10 is exactly 10%
        assert not is_text_content("\x00" + "a" * 9)


class TestSelection:
    def test_key_files_first_in_stable_order(self):
        paths = ["src/utils.py", "src/main.py", "lib/helpers.py", "README.md"]
        assert select_snapshot_files(paths) == [
            "src/main.py",
            "README.md",
            "src/utils.py",
            "lib/helpers.py",
        ]

    def test_cap(self):
        paths = [f"src/module_{i}.py" for i in range(500)]
        assert len(select_snapshot_files(paths)) == MAX_SNAPSHOT_FILES


class TestCollectSnapshot:
    def test_large_tree_is_capped(self, tmp_path: Path):
        for i in range(500):
            _write(tmp_path, f"src/module_{i:03d}.py", f"value = {i}\n")
        snapshot = collect_snapshot(tmp_path)
        assert len(snapshot.file_contents) <= MAX_SNAPSHOT_FILES

    def test_key_files_always_included(self, tmp_path: Path):
        for i in range(100):
            _write(tmp_path, f"src/module_{i:03d}.py", "x = 1\n")
        _write(tmp_path, "README.md", "# project\n")
        _write(tmp_path, "zzz/main.py", "run()\n")

        snapshot = collect_snapshot(tmp_path)
        assert "README.md" in snapshot.file_contents
        assert "zzz/main.py" in snapshot.file_contents
        assert set(snapshot.key_files) == {"README.md", "zzz/main.py"}

    def test_binary_and_oversized_excluded(self, tmp_path: Path):
        _write(tmp_path, "src/ok.py", "print('ok')\n")
        _write(tmp_path, "src/blob.py", b"\x00\x01\x02\x03\x04" * 20)
        _write(tmp_path, "src/huge.py", "x" * MAX_FILE_CHARS)

        snapshot = collect_snapshot(tmp_path)
        assert set(snapshot.file_contents) == {"src/ok.py"}
        assert snapshot.total_lines == 2

    def test_walk_skips_hidden_and_node_modules(self, tmp_path: Path):
        _write(tmp_path, "app.js", "start()\n")
        _write(tmp_path, ".cache/index.js", "x\n")
        _write(tmp_path, "node_modules/pkg/index.js", "y\n")

        assert list_repository_files(tmp_path) == ["app.js"]

    def test_uses_tracked_files_in_repository(self, git_repo: GitRepo):
        git_repo.write("tracked.py", "a = 1\n")
        git_repo.commit("Add tracked")
        git_repo.write("untracked.py", "b = 2\n")

        snapshot = collect_snapshot(git_repo.path)
        assert list(snapshot.file_contents) == ["tracked.py"]
