"""Exceptions raised by pipeline stages."""


class NetworkAnalysisError(Exception):
    """Base class for all pipeline failures."""


class ConfigurationError(NetworkAnalysisError):
    """Invalid parameter or unknown module/variable selection."""


class DataQualityError(NetworkAnalysisError):
    """Degenerate samples or taxa found while ON_DEGENERATE is 'raise'."""

    def __init__(self, bad_samples, bad_taxa):
        self.bad_samples = list(bad_samples)
        self.bad_taxa = list(bad_taxa)
        parts = []
        if self.bad_samples:
            parts.append(f"samples {self.bad_samples}")
        if self.bad_taxa:
            parts.append(f"taxa {self.bad_taxa}")
        super().__init__("Degenerate " + " and ".join(parts))


class PowerSelectionError(NetworkAnalysisError):
    """No candidate power reached the scale-free fit threshold."""

    def __init__(self, r2_cut, best_power=None, best_r2=None):
        self.r2_cut = r2_cut
        self.best_power = best_power
        self.best_r2 = best_r2
        message = f"No soft-threshold power reached signed R^2 > {r2_cut}"
        if best_power is not None:
            message += f" (best: power {best_power}, R^2 {best_r2:.3f})"
        message += "; set POWER_OVERRIDE to proceed with an explicit power"
        super().__init__(message)


class ModuleDetectionError(NetworkAnalysisError):
    """Clustering produced no module besides the unassigned label."""
