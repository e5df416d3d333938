# -*- coding: utf-8 -*-

"""
Meta analysis and visualization of de novo LTR retrotransposon predictions

Version: 1.0.0
License: BSD-3-Clause
"""

from .errors import ConfigurationError, DataConsistencyError, LTRMetaError, PredictorError
from .meta import LiveRunSource, MetaAnalyzer, PrecomputedSource, RunMode
from .records import (GenomeDescriptor, PredictionRecord, SimilarityBins, apply_filter,
                      describe_genome, quality_filter, read_predictions, similarity_filter)

__version__ = "1.0.0"
