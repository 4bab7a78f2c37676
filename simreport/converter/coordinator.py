"""
Distributed conversion of compartment reports.

The coordinator is the single writer of the destination report. Workers
(spawned processes) each open the source, read the layouts of a
contiguous entity range, then convert frames on request:

    entity phase:  RegisterRange -> EntityLayouts     (one per worker)
    frame phase:   AssignFrame   -> FrameDone         (pull model)
    shutdown:      Terminate

Frames are written by index, so the destination does not depend on the
order in which workers complete.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
import queue
import sys
import time
from collections import deque
from dataclasses import asdict, dataclass

from tqdm import tqdm

from simreport.converter.config import ConverterConfig
from simreport.converter.partition import partition_entities
from simreport.converter.protocol import (
    AssignFrame,
    EntityLayouts,
    FrameDone,
    RegisterRange,
    Terminate,
    WorkerFailed,
)
from simreport.converter.worker import convert_frame, read_layouts, worker_main
from simreport.core.compartment_report import CompartmentReport
from simreport.domain.types import AccessMode
from simreport.infrastructure.io.uri import ReportURI
from simreport.shared.exceptions import ConversionError, ReportError


logger = logging.getLogger(__name__)

# Seconds the coordinator waits on the result queue before checking workers
RESULT_POLL_INTERVAL = 0.1


def prequeue_depth(n_frames: int) -> int:
    """Frames handed to each worker before the pull loop starts."""
    return max(2, n_frames >> 9)


@dataclass
class ConversionSummary:
    """Outcome of a successful conversion."""

    input: str
    output: str
    entities: int
    frames: int
    frame_size: int
    workers: int
    elapsed: float

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


class Coordinator:
    """Drive one conversion run.

    Parameters
    ----------
    config : ConverterConfig
        Run parameters
    log_level : str
        Logging level of the worker processes

    Example
    -------
    >>> summary = Coordinator(ConverterConfig("in.h5", "out.h5", workers=4)).run()
    >>> summary.frames
    100
    """

    def __init__(self, config: ConverterConfig, log_level: str = "INFO"):
        self.config = config
        self.log_level = log_level
        self._processes: list[mp.process.BaseProcess] = []
        self._tasks: list[mp.Queue] = []
        self._results: mp.Queue | None = None

    # ------------------------------------------------------------------ #
    # Entry point
    # ------------------------------------------------------------------ #
    def run(self) -> ConversionSummary:
        """Convert the source report into the destination.

        Raises
        ------
        ConversionError
            If any worker fails; the partial destination is removed
        ReportError
            If the source or destination cannot be opened
        """
        started = time.monotonic()
        with CompartmentReport(self.config.input) as source:
            metadata = source.metadata
            n_entities = len(source.entities)
            n_frames = metadata.frame_count
            if self.config.max_frames is not None:
                n_frames = min(n_frames, self.config.max_frames)
            end_time = source.start_time + n_frames * source.timestep

            workers = self.config.workers if self.config.parallel else 1
            if workers > 1 and source.is_stream:
                logger.warning("[Coordinator] Stream sources are converted inline")
                workers = 1

            logger.info(
                "[Coordinator] Converting %s -> %s: %d cells, %d frames, %d worker(s)",
                self.config.input,
                self.config.output,
                n_entities,
                n_frames,
                workers,
            )

            destination = CompartmentReport(self.config.output, AccessMode.OVERWRITE)
            try:
                destination.write_header(metadata.with_updates(end_time=end_time))
                if workers > 1:
                    self._run_parallel(destination, workers, n_entities, n_frames)
                else:
                    self._run_inline(source, destination, n_frames)
                frame_size = destination.frame_size
                destination.close()
            except BaseException as e:
                self._abort(destination)
                if isinstance(e, ReportError) and not isinstance(e, ConversionError):
                    raise ConversionError(f"Conversion failed: {e}") from e
                raise

        summary = ConversionSummary(
            input=self.config.input,
            output=self.config.output,
            entities=n_entities,
            frames=n_frames,
            frame_size=frame_size,
            workers=workers,
            elapsed=time.monotonic() - started,
        )
        logger.info(
            "[Coordinator] Converted %s -> %s in %.2fs",
            summary.input,
            summary.output,
            summary.elapsed,
        )
        return summary

    # ------------------------------------------------------------------ #
    # Inline
    # ------------------------------------------------------------------ #
    def _run_inline(self, source: CompartmentReport, destination: CompartmentReport, n_frames: int) -> None:
        for gid, counts in read_layouts(source, 0, len(source.entities)):
            destination.register_entity(gid, counts)
        for index in tqdm(
            range(n_frames),
            desc="Converting frames",
            unit="frame",
            file=sys.stderr,
            disable=not sys.stderr.isatty(),
        ):
            timestamp, runs = convert_frame(source, index)
            for gid, values in runs:
                destination.write_frame(gid, values, timestamp)

    # ------------------------------------------------------------------ #
    # Parallel
    # ------------------------------------------------------------------ #
    def _run_parallel(
        self, destination: CompartmentReport, workers: int, n_entities: int, n_frames: int
    ) -> None:
        self._start_workers(workers)
        try:
            self._register_entities(destination, workers, n_entities)
            logger.debug("[Coordinator] Registered %d cells", n_entities)
            self._convert_frames(destination, workers, n_frames)
        except BaseException:
            self._terminate_workers()
            raise
        self._stop_workers()

    def _start_workers(self, workers: int) -> None:
        ctx = mp.get_context("spawn")
        self._results = ctx.Queue()
        for worker in range(workers):
            tasks = ctx.Queue()
            process = ctx.Process(
                target=worker_main,
                args=(worker, self.config.input, tasks, self._results, self.log_level),
                name=f"simreport-worker-{worker}",
                daemon=True,
            )
            process.start()
            self._tasks.append(tasks)
            self._processes.append(process)
        logger.debug("[Coordinator] Started %d workers", workers)

    def _receive(self, busy: set[int]) -> object | None:
        """Next result message, or None after a quiet poll interval.

        Raises ConversionError for a failure report or when a worker that
        still owes a result has died.
        """
        try:
            message = self._results.get(timeout=RESULT_POLL_INTERVAL)
        except queue.Empty:
            for worker in busy:
                process = self._processes[worker]
                if not process.is_alive():
                    raise ConversionError(
                        f"Worker process died (exit code {process.exitcode})", worker=worker
                    )
            return None
        if isinstance(message, WorkerFailed):
            raise ConversionError(message.error, worker=message.worker, frame_index=message.index)
        return message

    def _register_entities(self, destination: CompartmentReport, workers: int, n_entities: int) -> None:
        ranges = partition_entities(n_entities, workers)
        for worker, (first, last) in enumerate(ranges):
            self._tasks[worker].put(RegisterRange(first, last))

        layouts: dict[int, EntityLayouts] = {}
        waiting = set(range(workers))
        while waiting:
            message = self._receive(waiting)
            if message is None:
                continue
            if not isinstance(message, EntityLayouts):
                raise ConversionError(f"Unexpected message during registration: {message!r}")
            layouts[message.worker] = message
            waiting.discard(message.worker)

        # Register in range order so the destination keeps the source order
        for worker in range(workers):
            for gid, counts in layouts[worker].layouts:
                destination.register_entity(gid, counts)

    def _convert_frames(self, destination: CompartmentReport, workers: int, n_frames: int) -> None:
        pending = deque(range(n_frames))
        outstanding: dict[int, int] = {}  # frame index -> worker
        load = [0] * workers

        def assign(worker: int) -> bool:
            if not pending:
                return False
            index = pending.popleft()
            if index in outstanding:
                raise ConversionError("Frame assigned twice", worker=worker, frame_index=index)
            outstanding[index] = worker
            load[worker] += 1
            self._tasks[worker].put(AssignFrame(index))
            return True

        depth = prequeue_depth(n_frames)
        for worker in range(workers):
            for _ in range(depth):
                if not assign(worker):
                    break
        for worker in range(workers):
            if load[worker] == 0:
                self._tasks[worker].put(Terminate())

        with tqdm(
            total=n_frames,
            desc="Converting frames",
            unit="frame",
            file=sys.stderr,
            disable=not sys.stderr.isatty(),
        ) as pbar:
            while outstanding:
                busy = {w for w in range(workers) if load[w]}
                message = self._receive(busy)
                if message is None:
                    continue
                if not isinstance(message, FrameDone):
                    raise ConversionError(f"Unexpected message during conversion: {message!r}")
                if outstanding.pop(message.index, None) != message.worker:
                    raise ConversionError(
                        "Result for a frame not assigned to this worker",
                        worker=message.worker,
                        frame_index=message.index,
                    )
                load[message.worker] -= 1
                for gid, values in message.values:
                    destination.write_frame(gid, values, message.timestamp)
                pbar.update(1)

                if not assign(message.worker) and load[message.worker] == 0:
                    self._tasks[message.worker].put(Terminate())

    def _stop_workers(self) -> None:
        """Wait for workers that received ``Terminate``."""
        for process in self._processes:
            process.join(timeout=5.0)
            if process.is_alive():
                logger.warning("[Coordinator] %s did not exit, terminating", process.name)
                process.terminate()
                process.join()
        self._release_queues(cancel=False)

    def _terminate_workers(self) -> None:
        for process in self._processes:
            if process.is_alive():
                process.terminate()
        for process in self._processes:
            process.join(timeout=1.0)
        self._release_queues(cancel=True)

    def _release_queues(self, cancel: bool) -> None:
        queues = list(self._tasks)
        if self._results is not None:
            queues.append(self._results)
        for q in queues:
            if cancel:
                # Undelivered tasks of dead workers must not block exit
                q.cancel_join_thread()
            q.close()
        self._processes = []
        self._tasks = []
        self._results = None

    # ------------------------------------------------------------------ #
    # Failure
    # ------------------------------------------------------------------ #
    def _abort(self, destination: CompartmentReport) -> None:
        self._terminate_workers()
        try:
            destination.close()
        except ReportError as e:
            logger.warning("[Coordinator] Error closing partial output: %s", e)

        uri = ReportURI.parse(self.config.output)
        if uri.is_file and uri.path.exists():
            uri.path.unlink()
            logger.info("[Coordinator] Removed partial output %s", uri.path)


def convert(config: ConverterConfig, log_level: str = "INFO") -> ConversionSummary:
    """Run a conversion with ``config``."""
    return Coordinator(config, log_level).run()


__all__ = ["ConversionSummary", "Coordinator", "convert", "prequeue_depth"]
