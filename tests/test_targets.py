from pathlib import Path
import textwrap

import pytest

from copilot_monitor.targets import TargetLoadError, TargetLoader, WatchTarget, WatchTargets, load_targets


def write_target(path: Path, *, orgs: str, repos: str = "[]") -> None:
    path.write_text(
        textwrap.dedent(
            """
            description: Team repositories
            organizations: {orgs}
            repositories: {repos}
            ignore_jobs:
              - danger
            """
        ).strip().format(orgs=orgs, repos=repos),
        encoding="utf-8",
    )


def test_loader_defaults_id_to_file_stem(tmp_path: Path) -> None:
    write_target(tmp_path / "platform.yaml", orgs="[acme]", repos="[acme/app]")

    targets = TargetLoader([tmp_path]).load_all()

    assert list(targets) == ["platform"]
    assert targets["platform"].organizations == ["acme"]
    assert targets["platform"].repositories == ["acme/app"]


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_target(base / "team.yml", orgs="[acme]")
    write_target(override / "team.yaml", orgs="[globex]")

    targets = TargetLoader([base, override]).load_all()

    assert targets["team"].organizations == ["globex"]


def test_loader_handles_missing_paths(tmp_path: Path) -> None:
    loader = TargetLoader([tmp_path / "nowhere"])

    assert loader.search_paths == []
    assert loader.load_all() == {}


def test_loader_reports_all_errors(tmp_path: Path) -> None:
    (tmp_path / "broken.yaml").write_text("organizations: [unclosed", encoding="utf-8")
    (tmp_path / "invalid.yaml").write_text("repositories: [no-slash]", encoding="utf-8")

    with pytest.raises(TargetLoadError) as excinfo:
        TargetLoader([tmp_path]).load_all()

    message = str(excinfo.value)
    assert "broken.yaml" in message
    assert "invalid.yaml" in message


def test_empty_file_is_skipped(tmp_path: Path) -> None:
    (tmp_path / "empty.yaml").write_text("", encoding="utf-8")

    assert TargetLoader([tmp_path]).load_all() == {}


def test_single_string_is_accepted_as_list() -> None:
    target = WatchTarget(id=" solo ", organizations="acme", repositories=None)

    assert target.id == "solo"
    assert target.organizations == ["acme"]
    assert target.repositories == []


def test_combine_deduplicates_in_order(tmp_path: Path) -> None:
    write_target(tmp_path / "a.yaml", orgs="[acme, globex]")
    write_target(tmp_path / "b.yaml", orgs="[globex, initech]", repos="[acme/app]")

    combined = load_targets([tmp_path])

    assert combined.organizations == ["acme", "globex", "initech"]
    assert combined.repositories == ["acme/app"]
    assert combined.ignore_jobs == ["danger"]
    assert combined.sources == ["a", "b"]
    assert not combined.is_empty()
    assert WatchTargets().is_empty()
