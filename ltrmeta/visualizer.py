# -*- coding: utf-8 -*-

"""Plots for LTRpred predictions and meta analysis tables."""

import logging
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from . import records
from .errors import ConfigurationError
from .records import SimilarityBins


def significance_code(p):
    if p is None or np.isnan(p):
        return ''
    if p <= 0.0005:
        return '***'
    if p <= 0.005:
        return '**'
    if p <= 0.05:
        return '*'
    return ''


class LTRVisualizer:
    def __init__(self, output_dir, config=None):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.config = config if config else {}
        self._set_plot_style()

    def _set_plot_style(self):
        """Sets matplotlib params for publication-quality figures."""
        import matplotlib as mpl
        mpl.rcParams['font.family'] = 'sans-serif'
        mpl.rcParams['font.sans-serif'] = ['Arial', 'Helvetica', 'DejaVu Sans']
        mpl.rcParams['pdf.fonttype'] = 42
        mpl.rcParams['ps.fonttype'] = 42
        mpl.rcParams['axes.linewidth'] = 1.0
        mpl.rcParams['savefig.dpi'] = 300

    def pairwise_tests(self, sim_matrix, labels=None):
        """
        Compares neighbouring similarity bins across organisms.
        More than 30 organisms: z-test, otherwise Wilcoxon rank-sum test.
        """
        from scipy.stats import mannwhitneyu
        from statsmodels.stats.weightstats import ztest

        if labels is None:
            labels = [c for c in sim_matrix.columns if c != 'organism']
        n_obs = len(sim_matrix)
        test = 'z-test' if n_obs > 30 else 'wilcox'

        results = []
        for a, b in zip(labels[:-1], labels[1:]):
            x = sim_matrix[a].astype(float).values
            y = sim_matrix[b].astype(float).values
            p = np.nan
            try:
                with np.errstate(divide='ignore', invalid='ignore'):
                    if test == 'z-test':
                        _, p = ztest(x, y)
                    else:
                        _, p = mannwhitneyu(x, y, alternative='two-sided')
            except ValueError as e:
                logging.warning(f"Stats error ({a} vs {b}): {e}")
            results.append({
                'comparison': f"{a} vs {b}",
                'test': test,
                'p_value': float(p),
                'signif': significance_code(float(p)),
            })
        return pd.DataFrame(results, columns=['comparison', 'test', 'p_value', 'signif'])

    def cluster_profiles(self, profiles, centers, nstart=100, iter_max=100, method='euclidean', seed=0):
        """
        k-means over organism similarity profiles.
        centers is either the number of clusters or an array of initial centres.
        Returns (labels, centroids).
        """
        from scipy.cluster.vq import kmeans2

        if method != 'euclidean':
            raise ConfigurationError(f"Unsupported cluster distance '{method}'. Only 'euclidean' is available.")
        if centers is None:
            raise ConfigurationError("Please specify 'cl_centers' when cluster analysis is requested.")

        data = np.asarray(profiles, dtype=float)
        if np.ndim(centers) > 0:
            centroids, labels = kmeans2(data, np.asarray(centers, dtype=float), iter=iter_max, minit='matrix')
            return labels, centroids

        k = int(centers)
        if k < 1 or k > len(data):
            raise ConfigurationError(f"Cannot build {k} clusters from {len(data)} organisms.")

        rng = np.random.default_rng(seed)
        best = None
        for _ in range(max(1, nstart)):
            init = data[rng.choice(len(data), size=k, replace=False)]
            centroids, labels = kmeans2(data, init, iter=iter_max, minit='matrix', missing='warn')
            inertia = ((data - centroids[labels]) ** 2).sum()
            if best is None or inertia < best[0]:
                best = (inertia, labels, centroids)
        return best[1], best[2]

    def plot_sim_count(self, sim_matrix, genome_matrix=None, type='normalized',
                       cl_analysis=False, cl_centers=None, cl_nstart=100, cl_iter_max=100,
                       cl_method='euclidean', min_sim=70, similarity_bin=2,
                       xlab="% Similarity between 5' and 3' LTRs",
                       ylab="LTR retrotransposon content in Mega [bp]",
                       main="", text_size=18, file_name="sim_count.pdf"):
        """
        LTR similarity vs. predicted LTR count across genomes.

        sim_matrix and genome_matrix are the SimilarityMatrix and GenomeInfo
        tables of a meta analysis. With type='normalized' counts are divided
        by genome size (Mbp).
        """
        if type not in ('absolute', 'normalized'):
            raise ConfigurationError("Please choose a valid type: either 'absolute' or 'normalized'.")
        if type == 'normalized' and genome_matrix is None:
            raise ConfigurationError("Please specify the 'genome_matrix' argument when using type = 'normalized'.")

        cfg = self.config.get('plot', {}).get('sim_count', {})
        figsize = cfg.get('figsize', [12, 6])
        cmap = plt.get_cmap(cfg.get('cmap', 'viridis'))
        seed = cfg.get('seed', 0)

        bins = SimilarityBins.from_range(min_sim, similarity_bin)
        labels = bins.labels
        sim_matrix = sim_matrix.copy()
        if sim_matrix.shape[1] - 1 != len(labels):
            raise ConfigurationError(
                f"The similarity matrix has {sim_matrix.shape[1] - 1} bin columns but min_sim = {min_sim} "
                f"and similarity_bin = {similarity_bin} give {len(labels)} bins."
            )
        sim_matrix.columns = ['organism'] + labels

        if type == 'normalized':
            sizes = genome_matrix.set_index('organism')['genome.size'].reindex(sim_matrix['organism'])
            if sizes.isna().any():
                missing = sim_matrix['organism'][sizes.isna().values].tolist()
                raise ConfigurationError(f"No genome size for: {', '.join(map(str, missing))}")
            sim_matrix[labels] = sim_matrix[labels].astype(float).div(sizes.values, axis=0)

        out_path = self.output_dir / file_name
        colors = cmap(np.linspace(0, 1, len(labels)))
        positions = np.arange(1, len(labels) + 1)

        if cl_analysis:
            cl_labels, _ = self.cluster_profiles(sim_matrix[labels].values, cl_centers, nstart=cl_nstart,
                                                 iter_max=cl_iter_max, method=cl_method, seed=seed)
            clustered = sim_matrix.assign(cluster=cl_labels + 1)
            clustered[['organism', 'cluster']].to_csv(out_path.with_name(f"{out_path.stem}_clusters.csv"), index=False)

            n_clusters = int(cl_labels.max()) + 1
            cl_colors = plt.get_cmap('tab10')(np.arange(n_clusters) % 10)
            fig, ax = plt.subplots(figsize=figsize)
            for _, row in clustered.iterrows():
                ax.plot(positions, row[labels].values.astype(float), color=cl_colors[row['cluster'] - 1],
                        alpha=0.7, linewidth=1.5)
            for c in range(n_clusters):
                ax.plot([], [], color=cl_colors[c], label=f"Cluster {c + 1}")
            ax.legend(frameon=False)
        else:
            stats = self.pairwise_tests(sim_matrix, labels)
            stats.to_csv(out_path.with_name(f"{out_path.stem}_stats.csv"), index=False)
            logging.info(f"There are {len(sim_matrix)} elements in the dataset. "
                         f"A {stats['test'].iloc[0] if not stats.empty else 'wilcox'} test was applied "
                         f"to compute pairwise distribution differences.")
            logging.info("Pairwise comparisons:")
            for _, r in stats.iterrows():
                logging.info(f"  {r['comparison']}: p = {r['p_value']:.2f} ({r['signif']})")

            fig, ax = plt.subplots(figsize=figsize)
            # Violins need spread; degenerate bins are shown as points only
            violin_idx = [i for i, lab in enumerate(labels)
                          if len(sim_matrix[lab]) > 1 and np.ptp(sim_matrix[lab].values.astype(float)) > 0]
            if violin_idx:
                parts = ax.violinplot([sim_matrix[labels[i]].values.astype(float) for i in violin_idx],
                                      positions=positions[violin_idx], showmedians=True)
                for body, i in zip(parts['bodies'], violin_idx):
                    body.set_facecolor('none')
                    body.set_edgecolor(colors[i])
                    body.set_linewidth(2)
                    body.set_alpha(1)
                for partname in ('cbars', 'cmins', 'cmaxes', 'cmedians'):
                    parts[partname].set_edgecolor('black')
                    parts[partname].set_linewidth(1)

            for i, lab in enumerate(labels):
                values = sim_matrix[lab].values.astype(float)
                ax.scatter(np.full(len(values), positions[i]), values, color=colors[i], s=12)
                for organism, v in zip(sim_matrix['organism'], values):
                    ax.text(positions[i], v, str(organism), ha='left', va='bottom', fontsize=6)

            y_top = np.nanmax(sim_matrix[labels].values.astype(float)) if len(sim_matrix) else 0
            for i, r in stats.iterrows():
                if r['signif']:
                    ax.text(positions[i] + 0.5, y_top * 1.05, r['signif'], ha='center', va='bottom')

        ax.set_xticks(positions)
        ax.set_xticklabels(labels, rotation=90)
        ax.set_xlabel(xlab, fontsize=text_size, fontweight='bold')
        ax.set_ylabel(ylab, fontsize=text_size, fontweight='bold')
        if main:
            ax.set_title(main, fontsize=text_size, fontweight='bold')
        ax.spines['top'].set_visible(False)
        ax.spines['right'].set_visible(False)

        plt.tight_layout()
        plt.savefig(out_path, bbox_inches='tight')
        plt.close(fig)
        logging.info(f"Saved similarity count plot to {out_path}")
        return out_path

    def plot_ltr_width(self, data, element_type='full_retrotransposon', plot_type='boxplot',
                       similarity_bin=2, min_sim=70, quality_filter=False, n_orfs=0,
                       xlab="LTR % Similarity", ylab="LTR Retrotransposon length in bp",
                       main="", legend_title="Similarity between LTRs", y_ticks=10,
                       file_name="ltr_width.pdf"):
        """
        Width of predicted elements per similarity bin, as boxplot or violin.
        element_type='ltr_element' plots the left LTR length instead of the full element.
        """
        from matplotlib.ticker import MaxNLocator

        if plot_type not in ('boxplot', 'violin'):
            raise ConfigurationError("Please choose either plot_type = 'boxplot' or plot_type = 'violin'.")
        if element_type not in ('full_retrotransposon', 'ltr_element'):
            raise ConfigurationError(
                "Please choose either element_type = 'full_retrotransposon' or element_type = 'ltr_element'.")

        col = 'width' if element_type == 'full_retrotransposon' else 'lLTR_length'
        if col not in data.columns:
            raise ConfigurationError(f"Column '{col}' is required for element_type = '{element_type}'.")

        cfg = self.config.get('plot', {}).get('ltr_width', {})
        figsize = cfg.get('figsize', [10, 6])
        jitter = cfg.get('jitter', 0.15)
        point_size = cfg.get('point_size', 8)
        cmap = plt.get_cmap(cfg.get('cmap', 'viridis'))
        rng = np.random.default_rng(cfg.get('seed', 0))

        if quality_filter:
            data = records.quality_filter(data, sim=min_sim, n_orfs=n_orfs)
        else:
            logging.info("No quality filter has been applied.")

        bins = SimilarityBins.from_range(min_sim, similarity_bin)
        data = records.similarity_filter(data, sim=min_sim)
        data = data.assign(similarity=bins.cut(data['ltr_similarity']).values)

        colors = dict(zip(bins.labels, cmap(np.linspace(0, 1, len(bins.labels)))))
        groups = [(lab, data.loc[data['similarity'] == lab, col].dropna().values.astype(float))
                  for lab in bins.labels]
        groups = [(lab, v) for lab, v in groups if len(v) > 0]

        fig, ax = plt.subplots(figsize=figsize)
        positions = np.arange(1, len(groups) + 1)

        if groups:
            if plot_type == 'violin':
                idx = [i for i, (_, v) in enumerate(groups) if len(v) > 1 and np.ptp(v) > 0]
                if idx:
                    parts = ax.violinplot([groups[i][1] for i in idx], positions=positions[idx], showmedians=True)
                    for body, i in zip(parts['bodies'], idx):
                        body.set_facecolor(colors[groups[i][0]])
                        body.set_edgecolor('none')
                        body.set_alpha(0.6)
            else:
                bplot = ax.boxplot([v for _, v in groups], positions=positions, patch_artist=True,
                                   medianprops=dict(color="black"), showfliers=False)
                for patch, (lab, _) in zip(bplot['boxes'], groups):
                    patch.set_facecolor(colors[lab])
                    patch.set_alpha(0.6)

            for pos, (lab, v) in zip(positions, groups):
                x = rng.normal(pos, jitter, len(v))
                ax.scatter(x, v, s=point_size, color=colors[lab], alpha=0.7, edgecolors='none', label=lab)

            ax.legend(title=legend_title, frameon=False, bbox_to_anchor=(1.02, 1), loc='upper left')
        else:
            logging.warning("No predictions left to plot after filtering.")

        ax.set_xticks(positions)
        ax.set_xticklabels([lab for lab, _ in groups], rotation=90)
        ax.yaxis.set_major_locator(MaxNLocator(nbins=y_ticks))
        ax.yaxis.grid(True, linestyle='--', alpha=0.5)
        ax.set_xlabel(xlab, fontweight='bold')
        ax.set_ylabel(ylab, fontweight='bold')
        if main:
            ax.set_title(main, fontweight='bold')
        ax.spines['top'].set_visible(False)
        ax.spines['right'].set_visible(False)

        out_path = self.output_dir / file_name
        plt.tight_layout()
        plt.savefig(out_path, bbox_inches='tight')
        plt.close(fig)
        logging.info(f"Saved width plot to {out_path}")
        return out_path

    def plot_genome_summary(self, genome_info, metric='norm.nLTRs', file_name=None):
        """Bar chart of one GenomeInfo column per organism."""
        if metric not in genome_info.columns or metric == 'organism':
            raise ConfigurationError(f"Unknown genome info metric '{metric}'.")

        cfg = self.config.get('plot', {}).get('genome_summary', {})
        figsize = cfg.get('figsize', [8, 4])
        color = cfg.get('color', '#4DBBD5')
        ylabels = {
            'nLTRs': "Number of LTR retrotransposons",
            'totalMass': "LTR retrotransposon mass (Mbp)",
            'prop': "Proportion of genome",
            'norm.nLTRs': "LTR retrotransposons per Mbp",
            'genome.size': "Genome size (Mbp)",
            'genome.quality': "Fraction of N's in genome",
        }

        fig, ax = plt.subplots(figsize=figsize)
        ax.bar(genome_info['organism'].astype(str), genome_info[metric].astype(float), color=color, width=0.8)
        ax.set_ylabel(ylabels.get(metric, metric))
        ax.spines['top'].set_visible(False)
        ax.spines['right'].set_visible(False)
        plt.xticks(rotation=90)

        out_path = self.output_dir / (file_name if file_name else f"genome_summary_{metric}.pdf")
        plt.tight_layout()
        plt.savefig(out_path, bbox_inches='tight')
        plt.close(fig)
        return out_path
