import sys

import pandas as pd
import pytest

from conftest import prediction
from ltrmeta.errors import ConfigurationError, DataConsistencyError, PredictorError
from ltrmeta.meta import GENOME_INFO_COLUMNS, LiveRunSource, MetaAnalyzer, PrecomputedSource, RunMode


def analyzer(genomes, results, out, **kwargs):
    return MetaAnalyzer(genomes, PrecomputedSource(results), output_dir=out, **kwargs)


class TestPrecomputed:
    def test_tables(self, meta_layout, tmp_path):
        genomes, results = meta_layout
        sim_matrix, genome_info = analyzer(genomes, results, tmp_path / "out").process()

        assert list(sim_matrix['organism']) == ['Aly', 'Ath']
        assert list(genome_info.columns) == GENOME_INFO_COLUMNS
        assert len(sim_matrix.columns) == 16

        aly = sim_matrix.set_index('organism').loc['Aly']
        assert aly['[70,72]'] == 1
        assert aly['(98,100]'] == 1
        ath = sim_matrix.set_index('organism').loc['Ath']
        assert ath['(94,96]'] == 1
        assert ath['(96,98]'] == 1
        assert ath.sum() == 2

    def test_histogram_rows_sum_to_retained_predictions(self, meta_layout, tmp_path):
        genomes, results = meta_layout
        for quality in (True, False):
            sim_matrix, genome_info = analyzer(genomes, results, tmp_path / str(quality),
                                               quality_filter=quality).process()
            sums = sim_matrix.drop(columns='organism').sum(axis=1).tolist()
            assert sums == genome_info['nLTRs'].tolist()

    def test_summary_values(self, meta_layout, tmp_path):
        genomes, results = meta_layout
        _, genome_info = analyzer(genomes, results, tmp_path / "out").process()
        ath = genome_info.set_index('organism').loc['Ath']
        assert ath['nLTRs'] == 2
        assert ath['totalMass'] == pytest.approx(11000 / 1e6)
        assert ath['genome.size'] == pytest.approx(1000 / 1e6)
        assert ath['genome.quality'] == pytest.approx(0.2)
        assert ath['norm.nLTRs'] == pytest.approx(2 / (1000 / 1e6))
        for _, row in genome_info.iterrows():
            assert row['prop'] == pytest.approx(row['totalMass'] / row['genome.size'])

    def test_without_quality_filter(self, meta_layout, tmp_path):
        genomes, results = meta_layout
        _, genome_info = analyzer(genomes, results, tmp_path / "out", quality_filter=False).process()
        assert genome_info.set_index('organism')['nLTRs'].to_dict() == {'Aly': 3, 'Ath': 4}

    def test_output_files(self, meta_layout, tmp_path):
        genomes, results = meta_layout
        out = tmp_path / "out"
        analyzer(genomes, results, out).process()
        sim_path = out / "results_SimilarityMatrix.csv"
        info_path = out / "results_GenomeInfo.csv"
        assert sim_path.exists() and info_path.exists()
        header = info_path.read_text().splitlines()[0]
        assert header == "organism;nLTRs;totalMass;prop;norm.nLTRs;genome.size;genome.quality"
        sim = pd.read_csv(sim_path, sep=';')
        assert sim.columns[1] == "[70,72]"

    def test_file_name_prefix(self, meta_layout, tmp_path):
        genomes, results = meta_layout
        out = tmp_path / "out"
        analyzer(genomes, results, out, file_name="Brassicaceae").process()
        assert (out / "Brassicaceae_SimilarityMatrix.csv").exists()
        assert (out / "Brassicaceae_GenomeInfo.csv").exists()

    def test_identical_reruns(self, meta_layout, tmp_path):
        genomes, results = meta_layout
        analyzer(genomes, results, tmp_path / "a", quality_filter=False).process()
        analyzer(genomes, results, tmp_path / "b", quality_filter=False).process()
        for name in ("results_SimilarityMatrix.csv", "results_GenomeInfo.csv"):
            assert (tmp_path / "a" / name).read_bytes() == (tmp_path / "b" / name).read_bytes()

    def test_ignores_doc_and_checksum_files(self, meta_layout, tmp_path):
        genomes, results = meta_layout
        meta = analyzer(genomes, results, tmp_path / "out")
        assert meta.list_genomes() == ['Aly.fasta', 'Ath.fa']

    def test_skips_folder_without_data_sheet(self, meta_layout, tmp_path, make_genome, caplog):
        genomes, results = meta_layout
        make_genome(genomes / "Crub.fa", {"c1": "ACGT" * 10})
        (results / "Crub_ltrpred").mkdir()
        sim_matrix, genome_info = analyzer(genomes, results, tmp_path / "out").process()
        assert list(genome_info['organism']) == ['Aly', 'Ath']
        assert len(sim_matrix) == 2
        assert "folder was empty" in caplog.text


class TestFailures:
    def test_missing_genome_folder(self, meta_layout, tmp_path):
        _, results = meta_layout
        with pytest.raises(ConfigurationError, match="could not be found"):
            analyzer(tmp_path / "missing", results, tmp_path / "out")

    def test_missing_results_folder(self, meta_layout, tmp_path):
        genomes, _ = meta_layout
        with pytest.raises(ConfigurationError):
            analyzer(genomes, tmp_path / "missing", tmp_path / "out")

    def test_incompatible_bins(self, meta_layout, tmp_path):
        genomes, results = meta_layout
        with pytest.raises(ConfigurationError, match="bin width"):
            analyzer(genomes, results, tmp_path / "out", sim=99, cut_range=2)

    def test_more_genomes_than_result_folders(self, meta_layout, tmp_path, make_genome):
        genomes, results = meta_layout
        make_genome(genomes / "Crub.fa", {"c1": "ACGT"})
        out = tmp_path / "out"
        with pytest.raises(ConfigurationError):
            analyzer(genomes, results, out).process()
        assert not out.exists() or not any(out.iterdir())

    def test_mismatch_is_data_consistency_error(self, meta_layout, tmp_path, make_genome):
        genomes, results = meta_layout
        make_genome(genomes / "Crub.fa", {"c1": "ACGT"})
        with pytest.raises(DataConsistencyError):
            analyzer(genomes, results, tmp_path / "out").process()

    def test_no_result_folders(self, meta_layout, tmp_path):
        genomes, _ = meta_layout
        empty = tmp_path / "empty"
        empty.mkdir()
        with pytest.raises(DataConsistencyError):
            analyzer(genomes, empty, tmp_path / "out").process()


class TestManifest:
    def test_manifest_pairs(self, meta_layout, tmp_path, make_sheet):
        genomes, results = meta_layout
        make_sheet(results / "run2_ltrpred" / "run2_LTRpred_DataSheet.csv", [prediction('x', 99.5)])
        manifest = tmp_path / "manifest.tsv"
        manifest.write_text("genome\tresult_folder\nAth.fa\trun2_ltrpred\n")
        source = PrecomputedSource(results, manifest=manifest)
        sim_matrix, genome_info = MetaAnalyzer(genomes, source, output_dir=tmp_path / "out").process()
        assert list(genome_info['organism']) == ['Ath']
        assert sim_matrix.loc[0, '(98,100]'] == 1

    def test_manifest_unknown_genome(self, meta_layout, tmp_path):
        genomes, results = meta_layout
        manifest = tmp_path / "manifest.csv"
        manifest.write_text("genome,result_folder\nZea.fa,Ath_ltrpred\n")
        source = PrecomputedSource(results, manifest=manifest)
        with pytest.raises(DataConsistencyError):
            MetaAnalyzer(genomes, source, output_dir=tmp_path / "out").process()

    @pytest.mark.parametrize("content", [
        "genome,result_folder\nAth.fa,Ath_ltrpred\nAly.fasta,\n",
        "genome,result_folder\n,Aly_ltrpred\n",
        "genome,result_folder\nAly.fasta\n",
    ])
    def test_manifest_row_with_empty_cell(self, meta_layout, tmp_path, content):
        genomes, results = meta_layout
        manifest = tmp_path / "manifest.csv"
        manifest.write_text(content)
        source = PrecomputedSource(results, manifest=manifest)
        out = tmp_path / "out"
        with pytest.raises(DataConsistencyError, match="line"):
            MetaAnalyzer(genomes, source, output_dir=out).process()
        assert not out.exists()

    def test_empty_manifest_file(self, meta_layout, tmp_path):
        genomes, results = meta_layout
        manifest = tmp_path / "manifest.tsv"
        manifest.write_text("")
        source = PrecomputedSource(results, manifest=manifest)
        with pytest.raises(ConfigurationError, match="empty"):
            MetaAnalyzer(genomes, source, output_dir=tmp_path / "out").process()


PREDICTOR = """
import sys
from pathlib import Path

genome = Path(sys.argv[1])
name = genome.name.split('.')[0]
if sys.argv[2] == 'fail':
    sys.exit(3)
out = Path(name + '_ltrpred')
out.mkdir(exist_ok=True)
(out / (name + '_LTRpred_DataSheet.csv')).write_text(
    "ID;ltr_similarity;width;orfs;PBS_start;protein_domain;TE_N_abs\\n"
    + name + "_1;96.5;5000;2;100;RVT_1;0\\n"
)
"""


class TestLiveRun:
    @pytest.fixture
    def predictor(self, tmp_path):
        script = tmp_path / "fake_ltrpred.py"
        script.write_text(PREDICTOR)
        return script

    def test_runs_predictor_and_collects_results(self, tmp_path, make_genome, predictor):
        genomes = tmp_path / "genomes"
        make_genome(genomes / "Ath.fa", {"c1": "ACGT" * 100})
        make_genome(genomes / "Aly.fa", {"c1": "ACGT" * 100})
        work = tmp_path / "work"
        source = LiveRunSource(results_dir=tmp_path / "live_results",
                               command=[sys.executable, str(predictor), "{genome}", "{mode}"],
                               options={'mode': 'ok'}, work_dir=work)
        assert source.mode is RunMode.LIVE_RUN

        sim_matrix, genome_info = MetaAnalyzer(genomes, source, output_dir=tmp_path / "out").process()
        assert (tmp_path / "live_results" / "Ath_ltrpred" / "Ath_LTRpred_DataSheet.csv").exists()
        assert not (work / "Ath_ltrpred").exists()
        assert list(genome_info['organism']) == ['Aly', 'Ath']
        assert sim_matrix['(96,98]'].tolist() == [1, 1]
        assert (tmp_path / "out" / "live_results_GenomeInfo.csv").exists()

    def test_predictor_failure_fails_batch(self, tmp_path, make_genome, predictor):
        genomes = tmp_path / "genomes"
        make_genome(genomes / "Ath.fa", {"c1": "ACGT"})
        source = LiveRunSource(results_dir=tmp_path / "live_results",
                               command=[sys.executable, str(predictor), "{genome}", "fail"],
                               work_dir=tmp_path / "work")
        with pytest.raises(PredictorError) as err:
            MetaAnalyzer(genomes, source, output_dir=tmp_path / "out").process()
        assert err.value.returncode == 3
        assert not (tmp_path / "out").exists()

    def test_missing_predictor(self, tmp_path, make_genome):
        genomes = tmp_path / "genomes"
        make_genome(genomes / "Ath.fa", {"c1": "ACGT"})
        source = LiveRunSource(results_dir=tmp_path / "r", command=["no-such-ltrpred-binary", "{genome}"])
        with pytest.raises(ConfigurationError, match="PATH"):
            MetaAnalyzer(genomes, source, output_dir=tmp_path / "out").process()

    def test_unknown_template_field(self, tmp_path, make_genome):
        genomes = tmp_path / "genomes"
        make_genome(genomes / "Ath.fa", {"c1": "ACGT"})
        source = LiveRunSource(results_dir=tmp_path / "r", command=[sys.executable, "{trnas}"],
                               work_dir=tmp_path / "work")
        with pytest.raises(ConfigurationError, match="trnas"):
            MetaAnalyzer(genomes, source, output_dir=tmp_path / "out").process()
