"""Run logging for the RAG engine runner.

Each runner step is wrapped in a StepLogger, which records:
  - step start/finish and elapsed time
  - sizes of what went in and what came out (status mix for store frames)
  - one DECIDE line per store classification (file log only)
  - WARN lines for stores that could not be classified

StoreTracer follows a single store through a run. The classification
modules never log; only the runner does.

Usage:
    from src.pipeline_logger import get_logger, StepLogger

    with StepLogger("2", "Store Classification") as step:
        step.log_input("stores", stores)
        step.log_decision("ST-001", "Red", "A+ tier, 8.50% < amber floor 12")
        step.log_output("stores", stores_df)
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, List

import pandas as pd

_LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
_CONSOLE_FORMAT = "%(levelname)-5s | %(message)s"
_FILE_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)s | %(message)s"
_INITIALIZED = False


def setup_logging(
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    log_dir: Path = None,
) -> None:
    """Attach console and file handlers to the ``src`` logger tree once.

      - console: concise step summaries (INFO by default)
      - file: every store decision, logs/rag_engine_<timestamp>.log
    """
    global _INITIALIZED
    if _INITIALIZED:
        return

    target = Path(log_dir) if log_dir else _LOG_DIR
    target.mkdir(parents=True, exist_ok=True)
    log_file = target / f"rag_engine_{datetime.now():%Y%m%d_%H%M%S}.log"

    root = logging.getLogger("src")
    root.setLevel(logging.DEBUG)

    if not root.handlers:
        console = logging.StreamHandler()
        console.setLevel(logging.getLevelName(console_level.upper()))
        console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.getLevelName(file_level.upper()))
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%H:%M:%S"))

        root.addHandler(console)
        root.addHandler(file_handler)

    _INITIALIZED = True
    root.info(f"RAG engine logging to {log_file}")


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``src`` tree; sets up handlers on first use."""
    if not _INITIALIZED:
        setup_logging()
    return logging.getLogger(name)


def _format_values(values: dict, float_fmt: str) -> List[str]:
    return [
        f"{k}={v:{float_fmt}}" if isinstance(v, float) else f"{k}={v}"
        for k, v in values.items()
    ]


def _size(data: Any) -> str:
    if isinstance(data, pd.DataFrame):
        return f"{len(data)} rows × {len(data.columns)} cols"
    if isinstance(data, (list, tuple, set, dict)):
        return f"{len(data)} entries"
    return str(data)


class StepLogger:
    """Context manager that brackets one runner step.

    Usage:
        with StepLogger("3", "Portfolio Summary") as step:
            step.log_summary(red=2, amber=1, green=4)
    """

    def __init__(self, step_id: str, step_name: str, logger_name: str = None):
        self.step_id = step_id
        self.step_name = step_name
        self.logger = get_logger(logger_name or f"src.step_{step_id}")
        self.decisions = 0
        self._started = 0.0

    @property
    def label(self) -> str:
        return f"STEP {self.step_id}: {self.step_name}"

    def __enter__(self):
        self._started = time.perf_counter()
        self.logger.info("-" * 60)
        self.logger.info(f"{self.label} — START")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.perf_counter() - self._started
        if exc_type is not None:
            self.logger.error(f"{self.label} — FAILED after {elapsed:.2f}s: {exc_val}")
        else:
            self.logger.info(
                f"{self.label} — DONE in {elapsed:.2f}s ({self.decisions} decisions logged)"
            )
        return False

    def _line(self, tag: str, name: str, data: Any, detail: str = None) -> str:
        line = f"  {tag:<6} {name}: {_size(data)}"
        return f"{line} | {detail}" if detail else line

    def log_input(self, name: str, data: Any, detail: str = None):
        """Log the size of an input; dict inputs are dumped at DEBUG."""
        self.logger.info(self._line("INPUT", name, data, detail))
        if isinstance(data, dict) and data:
            self.logger.debug(f"  INPUT  {name}: {data}")

    def log_output(self, name: str, data: Any, detail: str = None):
        """Log the size of an output and, for store frames, the status mix."""
        self.logger.info(self._line("OUTPUT", name, data, detail))
        if isinstance(data, pd.DataFrame) and "final_status" in data.columns:
            mix = data["final_status"].value_counts().to_dict()
            self.logger.debug(f"  OUTPUT {name} status mix: {mix}")

    def log_calc(self, calc_name: str, detail: str = None, **values):
        self.decisions += 1
        parts = [f"  CALC   {calc_name}", *_format_values(values, ".4f")]
        if detail:
            parts.append(f"| {detail}")
        self.logger.debug(" ".join(parts))

    def log_decision(self, item_id: str, decision: str, reason: str):
        """One classification outcome for a store or store/brand pairing."""
        self.decisions += 1
        self.logger.debug(f"  DECIDE {item_id}: {decision} — {reason}")

    def log_warning(self, message: str):
        self.logger.warning(f"  WARN   {message}")

    def log_summary(self, **values):
        self.logger.info(" ".join(["  SUMMARY", *_format_values(values, ".3f")]))


@dataclass
class TraceEvent:
    step: str
    event: str
    value: Any = None
    detail: str = None
    at: datetime = field(default_factory=datetime.now)

    def describe(self) -> str:
        text = f"[{self.step}] {self.event}"
        if self.value is not None:
            text += f" = {self.value}"
        if self.detail:
            text += f" | {self.detail}"
        return text


class StoreTracer:
    """Collect the classification trail of one store.

    Usage:
        tracer = StoreTracer("ST-001")
        tracer.trace("Step 2", "attach_rate", 22.5, "previous=25.00, tier=A")
        logger.info(tracer.report())
    """

    def __init__(self, store_id: str):
        self.store_id = store_id
        self.events: List[TraceEvent] = []
        self.logger = get_logger(f"src.trace.{store_id}")

    def trace(self, step: str, event: str, value: Any = None, detail: str = None):
        ev = TraceEvent(step=step, event=event, value=value, detail=detail)
        self.events.append(ev)
        self.logger.debug(f"TRACE [{self.store_id}] {ev.describe()}")

    def report(self) -> str:
        lines = [f"=== Store Trace: {self.store_id} ({len(self.events)} events) ==="]
        lines.extend(f"  {ev.describe()}" for ev in self.events)
        return "\n".join(lines)
