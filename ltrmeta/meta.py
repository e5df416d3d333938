# -*- coding: utf-8 -*-

"""
Meta analysis of LTRpred predictions across many genomes.

For every genome in a folder the matching LTRpred result folder is located
(or produced by running the predictor), its data sheet is filtered and binned
by LTR similarity, and two tables are written:

  <prefix>_SimilarityMatrix.csv   organism + one count column per similarity bin
  <prefix>_GenomeInfo.csv         organism, nLTRs, totalMass, prop, norm.nLTRs,
                                  genome.size, genome.quality
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

import pandas as pd
from tqdm import tqdm

from .errors import ConfigurationError, DataConsistencyError, PredictorError
from .records import (MAX_N_FRACTION, SimilarityBins, apply_filter,
                      describe_genome, genome_name, read_predictions)

RESULT_TAG = "ltrpred"
DATASHEET_SUFFIX = "_LTRpred_DataSheet.csv"
EXCLUDED_TOKENS = ("doc_", "md5checksum", "md5cheksum")

GENOME_INFO_COLUMNS = ['organism', 'nLTRs', 'totalMass', 'prop', 'norm.nLTRs',
                       'genome.size', 'genome.quality']


class RunMode(Enum):
    PRECOMPUTED = "precomputed"
    LIVE_RUN = "live_run"


@dataclass
class PrecomputedSource:
    """LTRpred results already on disk, one '<name>_ltrpred' folder per genome."""
    results_dir: Path
    manifest: Optional[Path] = None
    mode = RunMode.PRECOMPUTED

    def __post_init__(self):
        self.results_dir = Path(self.results_dir)
        if self.manifest is not None:
            self.manifest = Path(self.manifest)


@dataclass
class LiveRunSource:
    """
    Run the predictor on each genome, then collect its output folder.

    command is an argument list; '{genome}' and '{name}' as well as any key of
    options are substituted per genome.
    """
    results_dir: Path
    command: list
    options: dict = field(default_factory=dict)
    work_dir: Path = Path(".")
    mode = RunMode.LIVE_RUN

    def __post_init__(self):
        self.results_dir = Path(self.results_dir)
        self.work_dir = Path(self.work_dir)


class MetaAnalyzer:
    def __init__(self, genome_dir, source, sim=70, cut_range=2, quality_filter=True,
                 n_orfs=1, file_name=None, output_dir=".", config=None):
        """
        Initialize the meta analysis.

        genome_dir:     folder holding one FASTA file per genome
        source:         PrecomputedSource or LiveRunSource
        sim:            minimum LTR similarity (percent)
        cut_range:      width of the similarity bins
        quality_filter: filter for PBS/protein evidence, ORFs and N content
        n_orfs:         minimum number of ORFs (quality filter only)
        file_name:      prefix of the output tables, defaults to the results folder name
        """
        self.genome_dir = Path(genome_dir)
        self.source = source
        self.sim = sim
        self.cut_range = cut_range
        self.quality_filter = quality_filter
        self.n_orfs = n_orfs
        self.file_name = file_name
        self.output_dir = Path(output_dir)
        self.config = config if config else {}

        defaults = self.config.get('meta', {})
        self.max_n_fraction = float(defaults.get('max_n_fraction', MAX_N_FRACTION))

        if not self.genome_dir.exists():
            raise ConfigurationError(f"The folder '{self.genome_dir}' could not be found.")

        # Shared by all genomes so the histogram columns are comparable
        self.bins = SimilarityBins.from_range(sim, cut_range)

        if source.mode is RunMode.PRECOMPUTED and not source.results_dir.exists():
            raise ConfigurationError(f"The folder '{source.results_dir}' could not be found.")

    def list_genomes(self):
        """Genome files in genome_dir, sorted, without documentation/checksum files."""
        return sorted(
            f.name for f in self.genome_dir.iterdir()
            if f.is_file()
            and not f.name.startswith('.')
            and not any(token in f.name for token in EXCLUDED_TOKENS)
        )

    def filter_description(self):
        if self.quality_filter:
            return (f"Apply filters: [ similarity >= {self.sim}% ] ; [ PBS or Protein Match ] ; "
                    f"[ #ORFs >= {self.n_orfs} ] ; [ rel #N's in TE <= {self.max_n_fraction} ]")
        return "No quality filter was applied..."

    def run_command(self, cmd, cwd=None):
        """Runs the predictor, blocking until it returns."""
        try:
            subprocess.run(cmd, cwd=cwd, check=True, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE)
        except subprocess.CalledProcessError as e:
            logging.error(f"Error executing command: {' '.join(cmd)}")
            stderr = e.stderr.decode(errors='replace') if e.stderr else None
            raise PredictorError(' '.join(cmd), e.returncode, stderr) from e

    def run_predictor(self, genomes):
        """
        Runs the predictor sequentially on every genome and moves each
        '<name>_ltrpred' output folder from work_dir into results_dir.
        """
        src = self.source
        if not src.command:
            raise ConfigurationError("Live run requested but no predictor command is configured.")
        if not shutil.which(src.command[0]):
            raise ConfigurationError(f"Predictor '{src.command[0]}' is missing from PATH.")

        src.work_dir.mkdir(parents=True, exist_ok=True)
        src.results_dir.mkdir(parents=True, exist_ok=True)

        for genome_file in genomes:
            name = genome_name(genome_file)
            fields = {**src.options,
                      'genome': str((self.genome_dir / genome_file).resolve()),
                      'name': name}
            try:
                cmd = [str(part).format(**fields) for part in src.command]
            except KeyError as e:
                raise ConfigurationError(f"Predictor command references unknown field {e}.") from e

            logging.info(f"Running predictor on {genome_file}...")
            logging.info(f"  {' '.join(cmd)}")
            self.run_command(cmd, cwd=src.work_dir)

            produced = src.work_dir / f"{name}_{RESULT_TAG}"
            target = src.results_dir / produced.name
            if not produced.exists():
                logging.warning(f"  Predictor left no result folder for {genome_file} ({produced})")
                continue
            if produced.resolve() == target.resolve():
                continue
            if target.exists():
                shutil.rmtree(target)
            shutil.move(str(produced), str(target))

    def _read_manifest(self):
        manifest = self.source.manifest
        if not manifest.exists():
            raise ConfigurationError(f"Manifest '{manifest}' could not be found.")
        sep = '\t' if manifest.suffix.lower() in ('.tsv', '.txt') else ','
        try:
            df = pd.read_csv(manifest, sep=sep, dtype=str, keep_default_na=False).fillna('')
        except pd.errors.EmptyDataError as e:
            raise ConfigurationError(f"Manifest '{manifest}' is empty.") from e
        if not {'genome', 'result_folder'}.issubset(df.columns):
            raise ConfigurationError(f"Manifest '{manifest}' needs the columns 'genome' and 'result_folder'.")

        pairs = []
        for i, row in df.iterrows():
            # Line numbers count the header as line 1
            if not row['genome'].strip() or not row['result_folder'].strip():
                raise DataConsistencyError(
                    f"Manifest '{manifest}' line {i + 2} needs both a genome and a result folder.")
            genome_path = self.genome_dir / row['genome']
            folder = self.source.results_dir / row['result_folder']
            if not genome_path.is_file():
                raise DataConsistencyError(f"Manifest genome '{row['genome']}' not found in {self.genome_dir}.")
            if not folder.is_dir():
                raise DataConsistencyError(f"Manifest result folder '{folder}' does not exist.")
            pairs.append((row['genome'], folder))
        if not pairs:
            raise DataConsistencyError(f"Manifest '{manifest}' lists no genomes.")
        return pairs

    def match_result_folders(self, genomes):
        """
        Pairs genome files with LTRpred result folders.
        '<name>_ltrpred' is paired with the genome file whose name up to the first dot is <name>.
        """
        if getattr(self.source, 'manifest', None) is not None:
            return self._read_manifest()

        results_dir = self.source.results_dir
        folders = sorted(p.name for p in results_dir.iterdir() if p.is_dir() and RESULT_TAG in p.name)
        if not folders:
            raise DataConsistencyError(f"No folders to be processed in {results_dir}.")
        logging.info(f"Result folders: {', '.join(folders)}")

        by_name = {genome_name(g): g for g in genomes}
        pairs = []
        for folder in folders:
            organism = folder.replace(f"_{RESULT_TAG}", "")
            if organism in by_name:
                pairs.append((by_name[organism], results_dir / folder))
            else:
                logging.warning(f"  No genome file matches result folder {folder}")

        if len(pairs) != len(genomes):
            raise DataConsistencyError(
                "Please make sure that the number of your genome files matches with your LTRpred folders "
                f"({len(genomes)} genome files, {len(pairs)} matching result folders)."
            )
        return pairs

    @staticmethod
    def data_sheet_path(folder):
        """'<dir>/Ath_ltrpred' -> '<dir>/Ath_ltrpred/Ath_LTRpred_DataSheet.csv'"""
        folder = Path(folder)
        parts = folder.name.split('_')
        stem = '_'.join(parts[:-1]) if len(parts) > 1 else folder.name
        return folder / f"{stem}{DATASHEET_SUFFIX}"

    def summarize_genome(self, organism, pred, genome):
        """Per-genome summary row; sizes in Mbp."""
        n_ltrs = pred['ID'].nunique()
        total_mass = float(pred['width'].sum()) / 1000000
        gs = genome.size_mbp
        return {
            'organism': organism,
            'nLTRs': n_ltrs,
            'totalMass': total_mass,
            'prop': total_mass / gs if gs else float('nan'),
            'norm.nLTRs': n_ltrs / gs if gs else float('nan'),
            'genome.size': gs,
            'genome.quality': genome.quality,
        }

    def output_prefix(self):
        return self.file_name if self.file_name else self.source.results_dir.resolve().name

    def write_tables(self, sim_matrix, genome_info):
        self.output_dir.mkdir(parents=True, exist_ok=True)
        prefix = self.output_prefix()
        sim_path = self.output_dir / f"{prefix}_SimilarityMatrix.csv"
        info_path = self.output_dir / f"{prefix}_GenomeInfo.csv"
        sim_matrix.to_csv(sim_path, sep=';', index=False)
        genome_info.to_csv(info_path, sep=';', index=False)
        logging.info(f"Saved similarity matrix to {sim_path}")
        logging.info(f"Saved genome info to {info_path}")
        return sim_path, info_path

    def process(self):
        """
        Run the complete meta analysis.

        Returns (sim_matrix, genome_info). Fatal configuration problems are
        raised before anything is written; a result folder without data
        sheet is skipped with a warning.
        """
        genomes = self.list_genomes()
        if not genomes:
            raise ConfigurationError(f"No genome files found in '{self.genome_dir}'.")

        logging.info("Starting LTRpred meta analysis on the following genomes: ")
        logging.info(", ".join(genomes))
        logging.info(self.filter_description())

        if self.source.mode is RunMode.LIVE_RUN:
            self.run_predictor(genomes)

        pairs = self.match_result_folders(genomes)

        sim_rows = []
        info_rows = []
        for genome_file, folder in tqdm(pairs, desc="Meta analysis", unit="genome", disable=None):
            sheet = self.data_sheet_path(folder)
            if not sheet.exists():
                logging.warning(f"Skip: {sheet} -> folder was empty!")
                continue

            logging.info(f"Processing file: {sheet}")
            pred = read_predictions(sheet)
            pred = apply_filter(pred, quality=self.quality_filter, sim=self.sim,
                                n_orfs=self.n_orfs, max_n_fraction=self.max_n_fraction)

            organism = genome_name(genome_file)
            counts = self.bins.count(pred['ltr_similarity'])
            sim_rows.append({'organism': organism, **counts.to_dict()})

            genome = describe_genome(self.genome_dir / genome_file)
            info_rows.append(self.summarize_genome(organism, pred, genome))

        if not sim_rows:
            logging.warning("No genome could be processed; writing empty tables.")

        sim_matrix = pd.DataFrame(sim_rows, columns=['organism'] + self.bins.labels)
        genome_info = pd.DataFrame(info_rows, columns=GENOME_INFO_COLUMNS)

        self.write_tables(sim_matrix, genome_info)
        logging.info("Finished meta analysis!")
        return sim_matrix, genome_info
