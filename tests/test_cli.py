import pandas as pd

from tsnescope.cli import main


def test_cli_writes_coordinates(tmp_path, blobs_df):
    input_path = tmp_path / "features.csv"
    output_path = tmp_path / "out" / "coords.csv"
    blobs_df.to_csv(input_path, index=False)

    code = main([
        str(input_path),
        "--perplexity", "3",
        "--max-iterations", "150",
        "--seed", "1",
        "--rescaling", "zscore",
        "--output", str(output_path),
        "--log-level", "WARNING",
    ])

    assert code == 0
    coords = pd.read_csv(output_path)
    assert list(coords.columns) == ["entity_id", "x", "y"]
    assert len(coords) == 12


def test_cli_distance_table_dry_run(tmp_path, blobs_distance_table, capsys):
    input_path = tmp_path / "pairs.csv"
    blobs_distance_table.to_csv(input_path, index=False)

    code = main([
        str(input_path),
        "--distance-table",
        "--perplexity", "3",
        "--max-iterations", "50",
        "--dry-run",
        "--log-level", "WARNING",
    ])

    assert code == 0
    out = capsys.readouterr().out
    assert out.splitlines()[0] == "entity_id,x,y"
    assert len(out.splitlines()) == 13


def test_cli_reports_failures(tmp_path, blobs_df):
    input_path = tmp_path / "features.csv"
    blobs_df.to_csv(input_path, index=False)

    assert main([str(tmp_path / "missing.csv"), "--log-level", "CRITICAL"]) == 1
    assert main([str(input_path), "--perplexity", "30", "--log-level", "CRITICAL"]) == 1
