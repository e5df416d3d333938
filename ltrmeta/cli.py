#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Command line interface of ltrmeta.

  ltrmeta meta        meta analysis over a genome folder (precomputed or live run)
  ltrmeta plot-sim    similarity vs. LTR count across genomes
  ltrmeta plot-width  element width per similarity bin
  ltrmeta cn2bed      copy number estimates -> BED
  ltrmeta export      filtered predictions -> BED / CSV
"""

import argparse
import codecs
import logging
import sys
from pathlib import Path

import pandas as pd
import tomli as toml

from .errors import ConfigurationError, LTRMetaError
from .export import cn2bed, pred2bed, pred2csv
from .meta import LiveRunSource, MetaAnalyzer, PrecomputedSource
from .records import apply_filter, read_predictions
from .visualizer import LTRVisualizer


def number(value):
    """'70' -> 70, '0.5' -> 0.5"""
    f = float(value)
    return int(f) if f.is_integer() else f


def separator(value):
    """Column separator; escapes such as '\\t' typed on the shell are decoded."""
    sep = codecs.decode(value, 'unicode_escape')
    if len(sep) != 1:
        raise argparse.ArgumentTypeError(f"separator must be a single character, got {value!r}")
    return sep


def pick(value, section, key, default):
    """Command line value, else config value, else built-in default."""
    if value is not None:
        return value
    return section.get(key, default)


def load_config(path):
    if not path:
        return {}
    try:
        with open(path, "rb") as f:
            config = toml.load(f)
    except (OSError, toml.TOMLDecodeError) as e:
        raise ConfigurationError(f"Failed to parse config file: {e}") from e
    logging.info(f"Loaded configuration from {path}")
    return config


def run_meta(args, config):
    meta_cfg = config.get('meta', {})
    if args.live:
        pred_cfg = config.get('predictor', {})
        source = LiveRunSource(results_dir=args.results,
                               command=pred_cfg.get('command', []),
                               options=pred_cfg.get('options', {}),
                               work_dir=pred_cfg.get('work_dir', '.'))
    else:
        source = PrecomputedSource(results_dir=args.results, manifest=args.manifest)

    quality = False if args.no_quality_filter else bool(meta_cfg.get('quality_filter', True))
    analyzer = MetaAnalyzer(args.genomes, source,
                            sim=pick(args.sim, meta_cfg, 'sim', 70),
                            cut_range=pick(args.cut_range, meta_cfg, 'cut_range', 2),
                            quality_filter=quality,
                            n_orfs=pick(args.n_orfs, meta_cfg, 'n_orfs', 1),
                            file_name=args.file_name,
                            output_dir=args.output,
                            config=config)
    sim_matrix, genome_info = analyzer.process()

    if args.plot and not genome_info.empty:
        visualizer = LTRVisualizer(args.output, config)
        visualizer.plot_sim_count(sim_matrix, genome_info, type='normalized',
                                  min_sim=analyzer.sim, similarity_bin=analyzer.cut_range,
                                  file_name=f"{analyzer.output_prefix()}_sim_count.pdf")
        visualizer.plot_genome_summary(genome_info, metric='norm.nLTRs',
                                       file_name=f"{analyzer.output_prefix()}_norm_nLTRs.pdf")


def run_plot_sim(args, config):
    sim_matrix = pd.read_csv(args.sim_matrix, sep=';')
    genome_matrix = pd.read_csv(args.genome_matrix, sep=';') if args.genome_matrix else None
    visualizer = LTRVisualizer(args.output, config)
    visualizer.plot_sim_count(sim_matrix, genome_matrix, type=args.type,
                              cl_analysis=args.cluster is not None, cl_centers=args.cluster,
                              cl_nstart=args.nstart, min_sim=args.min_sim,
                              similarity_bin=args.similarity_bin, main=args.main,
                              file_name=args.file_name)


def run_plot_width(args, config):
    pred = read_predictions(args.input)
    visualizer = LTRVisualizer(args.output, config)
    visualizer.plot_ltr_width(pred, element_type=args.element_type, plot_type=args.plot_type,
                              similarity_bin=args.similarity_bin, min_sim=args.min_sim,
                              quality_filter=args.quality_filter, n_orfs=args.n_orfs,
                              main=args.main, file_name=args.file_name)


def run_cn2bed(args, config):
    cn_pred = pd.read_csv(args.input, sep=args.in_sep)
    cn2bed(cn_pred, type=args.type, filename=args.filename, sep=args.sep, output=args.output)


def run_export(args, config):
    if not (args.bed or args.csv):
        raise ConfigurationError("Choose at least one export format: --bed and/or --csv.")
    meta_cfg = config.get('meta', {})
    pred = read_predictions(args.input)
    pred = apply_filter(pred, quality=args.quality_filter,
                        sim=pick(args.sim, meta_cfg, 'sim', 70),
                        n_orfs=pick(args.n_orfs, meta_cfg, 'n_orfs', 1))
    filename = args.filename if args.filename else Path(args.input).name.split('.')[0]
    source = Path(args.input).resolve()
    for wanted, suffix in ((args.bed, '.bed'), (args.csv, '.csv')):
        if wanted and (Path(args.output) / f"{filename}{suffix}").resolve() == source:
            raise ConfigurationError(
                f"Export would overwrite the input data sheet '{args.input}'. "
                f"Choose another --filename or output folder."
            )
    if args.bed:
        pred2bed(pred, filename=filename, output=args.output)
    if args.csv:
        pred2csv(pred, filename=filename, output=args.output)


def build_parser():
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-c", "--config", help="Path to TOML configuration file")
    common.add_argument("-o", "--output", default=".", help="Output directory (default: %(default)s)")
    common.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    parser = argparse.ArgumentParser(prog="ltrmeta",
                                     description="Meta analysis and visualization of LTRpred predictions")
    sub = parser.add_subparsers(dest="command", required=True)

    meta = sub.add_parser("meta", parents=[common], help="Meta analysis across genomes")
    meta.add_argument("-g", "--genomes", required=True, help="Folder with one genome FASTA per organism")
    meta.add_argument("-r", "--results", required=True,
                      help="Folder with '<name>_ltrpred' result folders (target folder with --live)")
    mode = meta.add_mutually_exclusive_group()
    mode.add_argument("--live", action="store_true", help="Run the predictor on every genome first")
    mode.add_argument("--manifest", help="CSV/TSV with columns genome,result_folder")
    meta.add_argument("--sim", type=number, help="Similarity threshold (default: 70)")
    meta.add_argument("--cut-range", type=number, help="Width of the similarity bins (default: 2)")
    meta.add_argument("--no-quality-filter", action="store_true", help="Only apply the similarity threshold")
    meta.add_argument("--n-orfs", type=int, help="Minimum number of ORFs (default: 1)")
    meta.add_argument("--file-name", help="Prefix of the output tables")
    meta.add_argument("--plot", action="store_true", help="Also plot similarity counts and normalized LTR counts")
    meta.set_defaults(func=run_meta)

    psim = sub.add_parser("plot-sim", parents=[common], help="Plot LTR similarity vs. predicted LTR count")
    psim.add_argument("-s", "--sim-matrix", required=True, help="*_SimilarityMatrix.csv")
    psim.add_argument("-m", "--genome-matrix", help="*_GenomeInfo.csv (required for --type normalized)")
    psim.add_argument("--type", choices=["absolute", "normalized"], default="normalized")
    psim.add_argument("--min-sim", type=number, default=70)
    psim.add_argument("--similarity-bin", type=number, default=2)
    psim.add_argument("--cluster", type=int, help="Cluster organisms into K groups")
    psim.add_argument("--nstart", type=int, default=100, help="Random restarts for clustering")
    psim.add_argument("--main", default="", help="Plot title")
    psim.add_argument("--file-name", default="sim_count.pdf")
    psim.set_defaults(func=run_plot_sim)

    pwidth = sub.add_parser("plot-width", parents=[common], help="Plot element width per similarity bin")
    pwidth.add_argument("-i", "--input", required=True, help="LTRpred data sheet")
    pwidth.add_argument("--element-type", choices=["full_retrotransposon", "ltr_element"],
                        default="full_retrotransposon")
    pwidth.add_argument("--plot-type", choices=["boxplot", "violin"], default="boxplot")
    pwidth.add_argument("--min-sim", type=number, default=70)
    pwidth.add_argument("--similarity-bin", type=number, default=2)
    pwidth.add_argument("--quality-filter", action="store_true")
    pwidth.add_argument("--n-orfs", type=int, default=0)
    pwidth.add_argument("--main", default="", help="Plot title")
    pwidth.add_argument("--file-name", default="ltr_width.pdf")
    pwidth.set_defaults(func=run_plot_width)

    cn = sub.add_parser("cn2bed", parents=[common], help="Write copy number estimates as BED")
    cn.add_argument("-i", "--input", required=True, help="Copy number table (BLAST columns)")
    cn.add_argument("--in-sep", type=separator, default="\t", help="Separator of the input table, e.g. '\\t' or ','")
    cn.add_argument("--type", choices=["solo", "te"], default="solo")
    cn.add_argument("--filename", default="copy_number_est")
    cn.add_argument("--sep", type=separator, default="\t", help="Separator of the BED file")
    cn.set_defaults(func=run_cn2bed)

    exp = sub.add_parser("export", parents=[common], help="Export predictions as BED and/or CSV")
    exp.add_argument("-i", "--input", required=True, help="LTRpred data sheet")
    exp.add_argument("--bed", action="store_true")
    exp.add_argument("--csv", action="store_true")
    exp.add_argument("--quality-filter", action="store_true")
    exp.add_argument("--sim", type=number)
    exp.add_argument("--n-orfs", type=int)
    exp.add_argument("--filename", help="Output base name (default: data sheet name)")
    exp.set_defaults(func=run_export)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    out_dir = Path(args.output)
    out_dir.mkdir(parents=True, exist_ok=True)

    # Setup Logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(out_dir / "ltrmeta.log"),
            logging.StreamHandler(sys.stdout)
        ]
    )
    # Suppress verbose font/backend logs
    logging.getLogger('fontTools').setLevel(logging.WARNING)
    logging.getLogger('matplotlib').setLevel(logging.WARNING)

    try:
        config = load_config(args.config)
        args.func(args, config)
    except LTRMetaError as e:
        logging.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
