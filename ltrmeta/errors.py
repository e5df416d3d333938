# -*- coding: utf-8 -*-

"""Exceptions raised by ltrmeta."""


class LTRMetaError(Exception):
    """Base class for all ltrmeta errors."""


class ConfigurationError(LTRMetaError):
    """Invalid invocation: missing paths, incompatible parameters."""


class DataConsistencyError(ConfigurationError):
    """Genome files and prediction result folders do not line up."""


class PredictorError(LTRMetaError):
    """The external LTR predictor failed during a live run."""

    def __init__(self, cmd, returncode, stderr=None):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        msg = f"Predictor exited with status {returncode}: {cmd}"
        if stderr:
            msg += f"\nDetails: {stderr}"
        super().__init__(msg)
