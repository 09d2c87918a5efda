import json
import os

import pandas as pd
import pytest

from cctmerge.common.errors import DiagnosticError
from cctmerge.common.settings import reset_settings_cache
from cctmerge.models import SummaryStat
from cctmerge.services.database import (
    EXPERIMENT_FILE,
    METRICS_FILE,
    default_database_name,
    experiment_document,
    make_database_dir,
    metric_frame,
    write_database,
)
from cctmerge.services.pipeline import make_metrics
from cctmerge.services.profile_reader import read_profiles

from .fixtures import write_profiles


@pytest.fixture
def finalized_profile(tmp_path):
    paths = [str(p) for p in write_profiles(tmp_path / "in", 2)]
    profile = read_profiles(paths)
    profile.cct.make_dense_preorder_ids()
    make_metrics(profile, [SummaryStat.SUM])
    return profile


def test_write_database_files(tmp_path, finalized_profile):
    db_dir = tmp_path / "db"
    db_dir.mkdir()

    write_database(finalized_profile, db_dir, "my run")

    document = json.loads((db_dir / EXPERIMENT_FILE).read_text())
    assert document["title"] == "my run"
    assert document["name"] == "app"
    assert [m["name"] for m in document["metrics"]] == [
        "CYCLES [rank-000]",
        "CYCLES [rank-001]",
        "CYCLES:sum",
    ]
    assert document["metrics"][2]["formula"] == "sum($0, $1)"
    assert [m["visible"] for m in document["metrics"]] == [False, False, True]
    assert all(m["computed"] for m in document["metrics"])
    assert [n["id"] for n in document["cct"]] == [0, 1, 2, 3]
    assert document["cct"][0]["parent"] is None
    assert document["cct"][1]["children"] == [2, 3]


def test_metric_csv_has_one_row_per_node(tmp_path, finalized_profile):
    db_dir = tmp_path / "db"
    db_dir.mkdir()

    write_database(finalized_profile, db_dir, "run")

    frame = pd.read_csv(db_dir / METRICS_FILE, index_col="node_id")
    assert list(frame.index) == [0, 1, 2, 3]
    assert list(frame["name"]) == ["<program root>", "main", "foo", "bar"]
    assert frame.loc[0, "CYCLES:sum"] == 6 + 7
    assert frame.loc[1, "CYCLES [rank-000]"] == 6
    assert frame.loc[1, "CYCLES [rank-001]"] == 7
    assert pd.isna(frame.loc[0, "parent_id"])
    assert frame.loc[2, "parent_id"] == 1


def test_metric_frame_in_memory(finalized_profile):
    frame = metric_frame(finalized_profile)

    assert frame.index.name == "node_id"
    assert list(frame.columns[:3]) == ["parent_id", "kind", "name"]
    assert frame.shape == (4, 3 + 3)


def test_experiment_requires_dense_ids(tmp_path):
    paths = [str(p) for p in write_profiles(tmp_path, 1)]
    profile = read_profiles(paths)

    with pytest.raises(DiagnosticError):
        experiment_document(profile, "t")


def test_write_into_missing_directory(tmp_path, finalized_profile):
    with pytest.raises(DiagnosticError):
        write_database(finalized_profile, tmp_path / "missing", "t")


def test_default_database_name(monkeypatch):
    assert default_database_name("lulesh") == "cctmerge-lulesh-database"
    assert default_database_name("my app/1") == "cctmerge-my_app_1-database"
    assert default_database_name("") == "cctmerge-profile-database"

    monkeypatch.setenv("CCTMERGE_DB_PREFIX", "hpc")
    reset_settings_cache()
    assert default_database_name("lulesh") == "hpc-lulesh-database"


def test_existing_default_directory_gets_pid_suffix(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "cctmerge-app-database").mkdir()

    path = make_database_dir(None, "app")

    assert path.name == f"cctmerge-app-database-{os.getpid()}"
    assert path.is_dir()


def test_explicit_directory_must_be_empty(tmp_path):
    target = tmp_path / "db"
    target.mkdir()
    (target / "stale").write_text("")

    with pytest.raises(DiagnosticError, match="not empty"):
        make_database_dir(target, "app")

    empty = tmp_path / "fresh"
    empty.mkdir()
    assert make_database_dir(empty, "app") == empty
    assert make_database_dir(tmp_path / "new" / "db", "app").is_dir()
