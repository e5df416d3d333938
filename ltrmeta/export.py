# -*- coding: utf-8 -*-

"""BED and CSV export of copy number estimates and LTR predictions."""

import logging
from pathlib import Path

from .errors import ConfigurationError

BED_COLUMNS = ['chromosome', 'start', 'end', 'ID']


def _target(filename, suffix, output):
    out_dir = Path(output) if output else Path('.')
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir / f"{filename}{suffix}"


def cn2bed(cn_pred, type='solo', filename='copy_number_est', sep='\t', output=None):
    """
    Writes copy number estimates (BLAST hits of LTRs against the genome) as BED.
    Columns: chromosome, start, end, ID, bit_score, strand; no header.
    """
    if type not in ('solo', 'te'):
        raise ConfigurationError("Please choose either 'solo' or 'te' as type.")

    required = ['subject_id', 'query_id', 's_start', 's_end', 'bit_score', 'strand']
    missing = [c for c in required if c not in cn_pred.columns]
    if missing:
        raise ConfigurationError(f"Copy number table lacks columns: {', '.join(missing)}")

    bed = cn_pred.assign(
        chromosome=cn_pred['subject_id'],
        ID=cn_pred['query_id'],
        start=cn_pred['s_start'],
        end=cn_pred['s_end'],
    )[BED_COLUMNS + ['bit_score', 'strand']]

    path = _target(filename, '.bed', output)
    bed.to_csv(path, sep=sep, header=False, index=False)
    logging.info(f"Saved {len(bed)} {type} copy number estimates to {path}")
    return path


def pred2bed(pred, filename='ltrpred', output=None, sep='\t'):
    """Writes predicted elements as BED: chromosome, start, end, ID, ltr_similarity, strand."""
    cols = BED_COLUMNS + ['ltr_similarity', 'strand']
    missing = [c for c in cols if c not in pred.columns]
    if missing:
        raise ConfigurationError(f"Prediction table lacks columns for BED export: {', '.join(missing)}")

    path = _target(filename, '.bed', output)
    pred[cols].to_csv(path, sep=sep, header=False, index=False)
    logging.info(f"Saved {len(pred)} predictions to {path}")
    return path


def pred2csv(pred, filename='ltrpred', output=None, sep=';'):
    """Writes a (filtered) prediction table with header and without row index."""
    path = _target(filename, '.csv', output)
    pred.to_csv(path, sep=sep, index=False)
    logging.info(f"Saved {len(pred)} predictions to {path}")
    return path
