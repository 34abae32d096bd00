"""Run logging for the network analysis pipeline."""

import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Optional

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(message)s'

# Header rule character and width per section level
SECTION_RULES = {1: ('=', 80), 2: ('-', 60)}


class PipelineLogger:
    """Logger writing DEBUG detail to a run file and INFO progress to stdout.

    Stages receive this object as their ``logger`` and call ``info``/``debug``/
    ``warning``; ``section`` and ``phase_start`` mark the pipeline phases.
    """

    def __init__(self, log_dir: Path = Path("logs"), run_id: Optional[str] = None,
                 console: bool = True):
        """
        Args:
            log_dir: Directory for log files
            run_id: Identifier of this run (default: timestamp)
            console: Echo INFO and above to stdout
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(exist_ok=True, parents=True)

        self.run_id = run_id or datetime.now().strftime("%Y%m%d_%H%M%S")
        self.log_file = self.log_dir / f"otu_network_{self.run_id}.log"

        self.logger = logging.getLogger(f"otu_network.{self.run_id}")
        self.logger.setLevel(logging.DEBUG)
        self.logger.handlers.clear()
        self.logger.propagate = False

        self._add_handler(
            logging.FileHandler(self.log_file, mode='w', encoding='utf-8'),
            logging.DEBUG, '%Y-%m-%d %H:%M:%S'
        )
        if console:
            self._add_handler(logging.StreamHandler(sys.stdout), logging.INFO, '%H:%M:%S')

        self.metrics = {}

    def _add_handler(self, handler: logging.Handler, level: int, datefmt: str):
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=datefmt))
        self.logger.addHandler(handler)

    def section(self, title: str, level: int = 1):
        """Log a header; level 1 and 2 are framed by rules, deeper levels are bullets."""
        if level not in SECTION_RULES:
            self.logger.info(f"* {title}")
            return
        char, width = SECTION_RULES[level]
        rule = char * width
        self.logger.info(rule)
        self.logger.info(f"{' ' * (3 - level)}{title}")
        self.logger.info(rule)

    def phase_start(self, phase_name: str):
        self.section(phase_name, level=2)

    def info(self, message: str):
        self.logger.info(message)

    def debug(self, message: str):
        self.logger.debug(message)

    def warning(self, message: str):
        self.logger.warning(message)

    def error(self, message: str):
        self.logger.error(message)

    def metric(self, phase: str, metrics: dict):
        """Record the metrics of a phase and log them one per line."""
        self.metrics[phase] = metrics
        self.logger.info("  Metrics:")
        for name, value in metrics.items():
            self.logger.info(f"    {name}: {self._format_value(value)}")

    @staticmethod
    def _format_value(value) -> str:
        if isinstance(value, float):
            return f"{value:.4f}"
        if isinstance(value, int) and not isinstance(value, bool):
            return f"{value:,}"
        return str(value)

    def summary_table(self, rows: list, headers: list):
        """Log rows as a left-aligned text table under the given headers."""
        cells = [[str(c) for c in row] for row in rows]
        widths = [
            max([len(str(h))] + [len(row[i]) for row in cells])
            for i, h in enumerate(headers)
        ]

        def line(values):
            return " | ".join(v.ljust(w) for v, w in zip(values, widths))

        self.logger.info(line([str(h) for h in headers]))
        self.logger.info("-+-".join("-" * w for w in widths))
        for row in cells:
            self.logger.info(line(row))

    def pipeline_summary(self, pls_results: dict, total_time: float):
        """Log the PLS outcome of every modeled (module, variable) pair.

        Args:
            pls_results: (module, variable) -> result dict of PLSModeler.fit
            total_time: Total execution time in seconds
        """
        self.section("PIPELINE EXECUTION SUMMARY", level=1)

        n_models = sum(1 for r in pls_results.values() if r['status'] == 'ok')
        self.logger.info(f"PLS models: {n_models}/{len(pls_results)} adequate")
        self.logger.info(f"Total execution time: {total_time:.1f}s")

        if pls_results:
            rows = []
            for (module, variable), result in pls_results.items():
                if result['status'] == 'ok':
                    rows.append([module, variable, "ok", result['n_components'],
                                 f"{result['r2']:.3f}", result['vip'].index[0]])
                else:
                    best = f"{result['r2_cv'].max():.3f}" if len(result['r2_cv']) else "-"
                    rows.append([module, variable, "no model", "-", best, "-"])

            self.logger.info("")
            self.summary_table(rows, ["Module", "Variable", "Status", "Comps", "CV R2", "Top VIP taxon"])
            self.logger.info("")

        self.logger.info(f"Full log: {self.log_file}")

    def close(self):
        """Detach and close all handlers."""
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)


def setup_logger(log_dir: Path = Path("logs"), run_id: Optional[str] = None,
                 console: bool = True) -> PipelineLogger:
    """Create the run logger.

    Args:
        log_dir: Directory for log files
        run_id: Identifier of this run
        console: Echo INFO and above to stdout

    Returns:
        PipelineLogger instance
    """
    return PipelineLogger(log_dir, run_id, console)
