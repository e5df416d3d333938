import os

os.environ.setdefault("MPLBACKEND", "Agg")

import pandas as pd
import pytest

SHEET_COLUMNS = ['ID', 'chromosome', 'start', 'end', 'strand', 'width', 'lLTR_length',
                 'ltr_similarity', 'orfs', 'PBS_start', 'protein_domain', 'TE_N_abs']


def prediction(ID, sim, width=5000, orfs=1, pbs=120.0, domain='RVT_1', n_abs=0,
               chromosome='chr1', start=1000, strand='+', lltr=400):
    return {
        'ID': ID, 'chromosome': chromosome, 'start': start, 'end': start + width - 1,
        'strand': strand, 'width': width, 'lLTR_length': lltr, 'ltr_similarity': sim,
        'orfs': orfs, 'PBS_start': pbs, 'protein_domain': domain, 'TE_N_abs': n_abs,
    }


@pytest.fixture
def make_sheet():
    def _make(path, rows, sep=';'):
        path.parent.mkdir(parents=True, exist_ok=True)
        pd.DataFrame(rows, columns=SHEET_COLUMNS).to_csv(path, sep=sep, index=False, na_rep='NA')
        return path
    return _make


@pytest.fixture
def make_genome():
    def _make(path, seqs):
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            for name, seq in seqs.items():
                f.write(f">{name}\n{seq}\n")
        return path
    return _make


@pytest.fixture
def meta_layout(tmp_path, make_sheet, make_genome):
    """
    genomes/Aly.fasta (2000 bp, no N), genomes/Ath.fa (1000 bp, 200 N)
    plus a doc_ and a checksum file; results/<name>_ltrpred data sheets.
    """
    genomes = tmp_path / "genomes"
    results = tmp_path / "results"
    make_genome(genomes / "Ath.fa", {"chr1": "ACGTN" * 100, "chr2": "ACGTN" * 100})
    make_genome(genomes / "Aly.fasta", {"chr1": "ACGT" * 500})
    (genomes / "doc_Ath.txt").write_text("download info\n")
    (genomes / "md5checksums.txt").write_text("abc  Ath.fa\n")

    make_sheet(results / "Ath_ltrpred" / "Ath_LTRpred_DataSheet.csv", [
        prediction('Ath_1', 95.0),
        prediction('Ath_2', 97.5, width=6000),
        prediction('Ath_3', 80.0, n_abs=750),
        prediction('Ath_4', 65.0),
        prediction('Ath_5', 88.0, pbs=None, domain=None),
    ])
    make_sheet(results / "Aly_ltrpred" / "Aly_LTRpred_DataSheet.csv", [
        prediction('Aly_1', 99.0),
        prediction('Aly_2', 72.0),
        prediction('Aly_3', 70.0, orfs=0),
    ])
    return genomes, results
