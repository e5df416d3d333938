# -*- coding: utf-8 -*-

"""
Prediction tables, quality filtering and similarity binning.

LTRpred writes one data sheet per genome (``<name>_LTRpred_DataSheet.csv``)
with one row per predicted LTR retrotransposon. Everything downstream
(meta analysis, plots, exports) reads those sheets through this module so the
quality filter and the similarity bins are defined exactly once.
"""

import gzip
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
from Bio import SeqIO

from .errors import ConfigurationError


@dataclass(frozen=True)
class PredictionRecord:
    """
    Column schema of an LTRpred data sheet: the fields the filters and
    summaries rely on. Rows are never materialized as records; predictions
    stay in DataFrames and this class only names and types their columns.
    """
    ID: str
    ltr_similarity: float
    width: int
    orfs: int
    PBS_start: Optional[float]
    protein_domain: Optional[str]
    TE_N_abs: int


REQUIRED_COLUMNS = [f.name for f in fields(PredictionRecord)]
NUMERIC_COLUMNS = ['ltr_similarity', 'width', 'orfs', 'TE_N_abs']

# Relative number of N's tolerated inside a predicted element
MAX_N_FRACTION = 0.1


def read_predictions(path):
    """
    Reads an LTRpred data sheet into a DataFrame.
    Semicolon separated sheets are expected; comma separated files are accepted too.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Prediction file '{path}' could not be found.")

    df = pd.read_csv(path, sep=';')
    if df.shape[1] == 1:
        df = pd.read_csv(path, sep=',')

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ConfigurationError(f"{path} lacks required columns: {', '.join(missing)}")

    for col in NUMERIC_COLUMNS:
        df[col] = pd.to_numeric(df[col], errors='coerce')
    return df


def similarity_filter(pred, sim=70):
    """Keeps predictions with ltr_similarity >= sim."""
    return pred.loc[pred['ltr_similarity'] >= sim].reset_index(drop=True)


def quality_filter(pred, sim=70, n_orfs=1, max_n_fraction=MAX_N_FRACTION):
    """
    Reduces false positives. A prediction is retained only if all hold:
      - ltr_similarity >= sim
      - TE_N_abs / width <= max_n_fraction
      - a PBS or a protein domain match was found
      - orfs >= n_orfs
    """
    n_fraction = pred['TE_N_abs'] / pred['width']
    has_evidence = pred['PBS_start'].notna() | pred['protein_domain'].notna()
    mask = (
        (pred['ltr_similarity'] >= sim)
        & (n_fraction <= max_n_fraction)
        & has_evidence
        & (pred['orfs'] >= n_orfs)
    )
    return pred.loc[mask].reset_index(drop=True)


def apply_filter(pred, quality=True, sim=70, n_orfs=1, max_n_fraction=MAX_N_FRACTION):
    """Quality filter when requested, otherwise the plain similarity threshold."""
    if quality:
        return quality_filter(pred, sim=sim, n_orfs=n_orfs, max_n_fraction=max_n_fraction)
    logging.info(f"No quality filter has been applied. Threshold: sim = {sim}%.")
    return similarity_filter(pred, sim=sim)


def _fmt(x):
    return f"{x:g}"


@dataclass(frozen=True)
class SimilarityBins:
    """
    Partition of the LTR similarity axis [sim, 100].

    Breakpoints run downwards from 100 in steps of bin_width. The lowest bin
    is closed on both ends, all others are (lower, upper].
    """
    breaks: tuple

    @classmethod
    def from_range(cls, sim=70, bin_width=2):
        if bin_width <= 0:
            raise ConfigurationError(f"Similarity bin width must be positive, got {bin_width}.")

        n_steps = int(np.floor((100 - sim) / bin_width + 1e-9))
        stepped = [round(100 - k * bin_width, 10) for k in range(n_steps + 1)]
        if len(stepped) < 2:
            raise ConfigurationError(
                f"Please specify a bin width that is compatible with the similarity threshold. "
                f"The input bin width = {bin_width}, whereas the similarity range is [{sim},100]."
            )

        breaks = sorted(stepped)
        # Threshold not reached by whole steps: close the gap with a narrower lowest bin
        if breaks[0] - sim > 1e-9:
            breaks.insert(0, float(sim))
        return cls(tuple(float(b) for b in breaks))

    @property
    def labels(self):
        pairs = list(zip(self.breaks[:-1], self.breaks[1:]))
        labels = [f"[{_fmt(pairs[0][0])},{_fmt(pairs[0][1])}]"]
        labels += [f"({_fmt(lo)},{_fmt(hi)}]" for lo, hi in pairs[1:]]
        return labels

    def __len__(self):
        return len(self.breaks) - 1

    def cut(self, values):
        """Assigns each similarity value to its bin label (NaN outside [sim, 100])."""
        values = pd.to_numeric(pd.Series(values, dtype=float), errors='coerce')
        return pd.cut(values, bins=list(self.breaks), labels=self.labels,
                      right=True, include_lowest=True)

    def count(self, values):
        """Number of values per bin; every bin is reported, empty ones as zero."""
        binned = self.cut(values)
        counts = binned.value_counts(sort=False)
        return counts.reindex(self.labels, fill_value=0).astype(int)


@dataclass(frozen=True)
class GenomeDescriptor:
    name: str
    total_length: int
    n_count: int

    @property
    def size_mbp(self):
        return self.total_length / 1000000

    @property
    def quality(self):
        if self.total_length == 0:
            return float('nan')
        return self.n_count / self.total_length


def genome_name(filename):
    """Organism name of a genome file: everything before the first dot."""
    return str(filename).split('.')[0]


def describe_genome(path):
    """Scans a (optionally gzipped) FASTA file for total length and number of N's."""
    path = Path(path)
    opener = gzip.open if path.suffix == '.gz' else open
    total = 0
    n_count = 0
    with opener(path, 'rt') as handle:
        for record in SeqIO.parse(handle, 'fasta'):
            seq = str(record.seq).upper()
            total += len(seq)
            n_count += seq.count('N')
    return GenomeDescriptor(name=genome_name(path.name), total_length=total, n_count=n_count)
