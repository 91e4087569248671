"""End-to-end tests for dataset preparation and its companion scripts."""

import importlib.util
from pathlib import Path

import pandas as pd
import pytest

import annotation
from aggregation import DataError
from annotation import AnnotationLookupError, AnnotationSource, StaticSource
from check_dataset import summarize_dataset
from check_dataset import main as check_main
from dataset_io import InputValidationError
from prepare_dataset import main, prepare_dataset

REPO_ROOT = Path(__file__).resolve().parents[1]


class FailingSource(AnnotationSource):
    def fetch(self, probe_ids):
        raise AnnotationLookupError("BioMart unreachable")


def load_manifest_script():
    spec = importlib.util.spec_from_file_location(
        "build_data_manifest", REPO_ROOT / "scripts" / "build_data_manifest.py"
    )
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestPrepareDataset:
    """Test the full probe -> symbol preparation."""

    def test_writes_symbol_table(self, tmp_path, measurements_csv, static_source):
        out = tmp_path / "cancer_dataset.tsv"
        prepare_dataset(measurements_csv, out, source=static_source)

        written = pd.read_csv(out, sep="\t")
        assert list(written.columns) == ["samples", "type", "DDR1", "RFC2"]
        assert written["samples"].tolist() == ["s1", "s2", "s3"]
        assert written["type"].tolist() == ["cancer", "normal", "cell_line"]
        assert written["DDR1"].tolist() == [5.5, 6.5, 7.5]
        assert written["RFC2"].tolist() == [4.0, 5.0, 6.0]

    def test_returns_table_without_writing(self, tmp_path, measurements_csv, static_source):
        result = prepare_dataset(measurements_csv, None, source=static_source)
        assert result.shape == (3, 4)
        assert list(tmp_path.iterdir()) == [measurements_csv]

    def test_custom_type_labels(self, measurements_csv, static_source):
        result = prepare_dataset(
            measurements_csv, None, source=static_source, keep=("normal",), other="other"
        )
        assert result["type"].tolist() == ["other", "normal", "other"]

    def test_writes_annotation_table(self, tmp_path, measurements_csv, static_source):
        annotations = tmp_path / "probe_annotations.tsv"
        prepare_dataset(measurements_csv, None, source=static_source, annotation_out=annotations)
        written = pd.read_csv(annotations, sep="\t")
        assert sorted(written["probe"]) == ["1007_s_at", "1053_at", "121_at"]
        assert "chromosome" in written.columns

    def test_lookup_failure_writes_nothing(self, tmp_path, measurements_csv):
        out = tmp_path / "cancer_dataset.tsv"
        with pytest.raises(AnnotationLookupError):
            prepare_dataset(measurements_csv, out, source=FailingSource())
        assert not out.exists()

    def test_bad_measurement_writes_nothing(self, tmp_path, measurements, static_source):
        measurements["1053_at"] = measurements["1053_at"].astype(object)
        measurements.loc[1, "1053_at"] = "NA?"
        path = tmp_path / "bad.csv"
        measurements.to_csv(path, index=False)
        out = tmp_path / "cancer_dataset.tsv"
        annotations = tmp_path / "annotations.tsv"
        with pytest.raises(DataError):
            prepare_dataset(path, out, source=static_source, annotation_out=annotations)
        assert not out.exists()
        assert not annotations.exists()

    def test_sample_ids_round_trip_unchanged(self, tmp_path, static_source):
        path = tmp_path / "padded.csv"
        path.write_text("samples,type,1053_at\n001,basal,1.0\n01,normal,2.0\nNA,cell_line,3.0\n")
        out = tmp_path / "cancer_dataset.tsv"
        prepare_dataset(path, out, source=static_source)
        written = pd.read_csv(out, sep="\t", dtype=str, keep_default_na=False)
        assert written["samples"].tolist() == ["001", "01", "NA"]
        assert written["RFC2"].tolist() == ["1.0", "2.0", "3.0"]

    def test_failed_annotation_write_leaves_no_output(self, tmp_path, measurements_csv, static_source):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        out = tmp_path / "cancer_dataset.tsv"
        with pytest.raises(OSError):
            prepare_dataset(
                measurements_csv, out, source=static_source, annotation_out=blocker / "ann.tsv"
            )
        assert not out.exists()
        assert not (tmp_path / "cancer_dataset.tsv.tmp").exists()

    def test_symbol_named_like_metadata_column_is_rejected(self, tmp_path, measurements_csv):
        source = StaticSource({"1053_at": "type", "121_at": "DDR1"})
        out = tmp_path / "cancer_dataset.tsv"
        with pytest.raises(DataError, match="metadata"):
            prepare_dataset(measurements_csv, out, source=source)
        assert not out.exists()

    def test_invalid_input_raises(self, tmp_path, static_source):
        path = tmp_path / "bad.csv"
        path.write_text("sample,kind,1053_at\ns1,basal,1.0\n")
        with pytest.raises(InputValidationError):
            prepare_dataset(path, None, source=static_source)


class TestMain:
    """Test the command line entry point."""

    def test_offline_run_with_mapping_table(self, tmp_path, measurements_csv, capsys):
        mapping = tmp_path / "probes.tsv"
        mapping.write_text("probe\tsymbol\n1007_s_at\tDDR1\n1053_at\tRFC2\n121_at\tDDR1\n")
        out = tmp_path / "cancer_dataset.tsv"

        code = main([str(measurements_csv), "--output", str(out), "--mapping", str(mapping)])

        assert code == 0
        assert "3 samples and 2 gene symbols" in capsys.readouterr().out
        assert out.exists()

    def test_missing_input_reports_error(self, tmp_path, capsys):
        code = main([str(tmp_path / "absent.csv"), "--output", str(tmp_path / "out.tsv")])
        assert code == 1
        assert "Error" in capsys.readouterr().err

    def test_biomart_failure_reports_error(self, tmp_path, measurements_csv, monkeypatch, capsys):
        def down(url, timeout):
            raise OSError("network is unreachable")

        monkeypatch.setattr(annotation, "_http_get", down)
        monkeypatch.setattr(annotation.time, "sleep", lambda seconds: None)
        out = tmp_path / "cancer_dataset.tsv"

        code = main([str(measurements_csv), "--output", str(out)])

        assert code == 1
        assert "BioMart lookup failed" in capsys.readouterr().err
        assert not out.exists()


class TestCheckDataset:
    """Test the prepared dataset summary."""

    def test_summary(self):
        df = pd.DataFrame(
            {
                "samples": ["s1", "s2", "s3"],
                "type": ["cancer", "cancer", "normal"],
                "DDR1": [1.0, 2.0, 3.0],
                "RFC2": [3.0, None, 5.0],
            }
        )
        summary = summarize_dataset(df)
        assert summary["samples"] == 3
        assert summary["symbols"] == 2
        assert summary["types"] == {"cancer": 2, "normal": 1}
        assert summary["missing_values"] == 1
        assert summary["mean_expression"] == pytest.approx(2.8)

    def test_rejects_table_without_metadata(self):
        with pytest.raises(ValueError):
            summarize_dataset(pd.DataFrame({"DDR1": [1.0]}))

    def test_main_on_prepared_output(self, tmp_path, measurements_csv, static_source, capsys):
        out = tmp_path / "cancer_dataset.tsv"
        prepare_dataset(measurements_csv, out, source=static_source)
        assert check_main([str(out)]) == 0
        printed = capsys.readouterr().out
        assert "Gene symbols: 2" in printed
        assert "type=cancer: 1" in printed


class TestBuildDataManifest:
    """Test the manifest of prepared data files."""

    def test_lists_data_files(self, tmp_path, measurements_csv, static_source):
        prepare_dataset(measurements_csv, tmp_path / "cancer_dataset.tsv", source=static_source)
        (tmp_path / "notes.txt").write_text("not a table")
        manifest = load_manifest_script().build_manifest(tmp_path)

        assert manifest["file"].tolist() == ["Breast_GSE45827.csv", "cancer_dataset.tsv"]
        assert manifest["rows"].tolist() == [3, 3]
        assert manifest["cols"].tolist() == [6, 4]
        assert manifest["sha256"].str.len().tolist() == [64, 64]
