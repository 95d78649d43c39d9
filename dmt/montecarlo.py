"""
Monte-Carlo Verification Session

PURPOSE:
Estimates the per-subchannel symbol error rate of the current loading by
repeated transmission and adapts the loading when the measured error rate
is well above the theoretical one.

STATE MACHINE:
    INIT -> RUNNING -> (RETRAINING -> RUNNING)* -> DONE

- RUNNING: each iteration transmits one batch and records its errors
- RETRAINING: fires when mean(ser_n / d_n) > factor * Pe_bar after more
  than `retrain_min_symbols` DMT symbols. The loading is rebuilt from the
  smoothed transmit autocorrelation and the counters restart at zero
- DONE: error or iteration cap reached, or nothing can be loaded

CONCURRENCY:
With `workers > 1` each iteration runs independent batches on a thread
pool, each with its own random stream spawned from one SeedSequence.
Counts are reduced by the coordinator before the retraining check, and
the LinkState is captured once per iteration. LinkState is immutable, so
retraining replaces it instead of patching it.

USAGE:
    session = MonteCarloSession(config, state, transmit, retrain)
    result = session.run()
    print(result.pe_bar_measured, result.retrainings)
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

import numpy as np

from dmt.config import DmtConfig
from dmt.loading import LoadingResult
from dmt.modem import ModemBank
from dmt.performance import LoadingFigures
from dmt.transceiver import TransmissionBatch
from dmt.utils import get_timestamp_ms

logger = logging.getLogger(__name__)


class SessionState(Enum):
    INIT = "init"
    RUNNING = "running"
    RETRAINING = "retraining"
    DONE = "done"


class StopReason(Enum):
    MAX_ERRORS = "max_errors"
    MAX_ITERATIONS = "max_iterations"
    INFEASIBLE = "infeasible"


def _read_only(array: np.ndarray) -> np.ndarray:
    array = np.array(array, copy=True)
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class LinkState:
    """
    Everything that depends on the current loading.

    Replaced as a whole on retraining; batches in flight keep the version
    they started with.
    """
    gain_to_noise: np.ndarray
    loading: LoadingResult
    modems: ModemBank
    figures: LoadingFigures

    def __post_init__(self):
        object.__setattr__(self, "gain_to_noise", _read_only(self.gain_to_noise))

    @property
    def snr(self) -> np.ndarray:
        return self.figures.snr

    @property
    def pe_bar_n(self) -> np.ndarray:
        return self.figures.pe_n

    @property
    def pe_bar(self) -> float:
        return self.figures.pe_bar

    @property
    def loaded_dims(self) -> np.ndarray:
        """Real dimensions of every loaded subchannel."""
        return self.modems.dims[self.modems.loaded]

    @property
    def is_feasible(self) -> bool:
        return self.loading.is_feasible


@dataclass
class SessionCounters:
    """Error statistics since the last retraining."""
    symbol_errors: np.ndarray
    n_symbols: int = 0
    iterations: int = 0

    @classmethod
    def zeros(cls, n_loaded: int) -> "SessionCounters":
        return cls(symbol_errors=np.zeros(n_loaded, dtype=int))

    @property
    def num_errors(self) -> int:
        return int(np.sum(self.symbol_errors))

    def ser_per_dimension(self, dims: np.ndarray) -> np.ndarray:
        """Measured symbol error rate per dimension on each loaded subchannel."""
        if self.n_symbols == 0:
            return np.zeros(len(self.symbol_errors))
        return self.symbol_errors / self.n_symbols / dims


@dataclass(frozen=True, eq=False)
class MonteCarloResult:
    """Final statistics of a verification session."""
    ser_n: np.ndarray               # Measured SER per dimension, loaded subchannels
    pe_bar_measured: float
    pe_bar_theoretical: float
    num_errors: int
    n_symbols: int
    iterations: int                 # Since the last retraining
    total_iterations: int
    retrainings: int
    stop_reason: Optional[StopReason]  # None while still running
    elapsed_ms: float

    def to_dict(self) -> dict:
        return {
            'ser_n': self.ser_n.tolist(),
            'pe_bar_measured': self.pe_bar_measured,
            'pe_bar_theoretical': self.pe_bar_theoretical,
            'num_errors': self.num_errors,
            'n_symbols': self.n_symbols,
            'iterations': self.iterations,
            'total_iterations': self.total_iterations,
            'retrainings': self.retrainings,
            'stop_reason': self.stop_reason.value if self.stop_reason else None,
            'elapsed_ms': self.elapsed_ms,
        }


# transmit(state, rng) -> TransmissionBatch; retrain(rxx) -> LinkState
TransmitFn = Callable[[LinkState, np.random.Generator], TransmissionBatch]
RetrainFn = Callable[[Optional[np.ndarray]], LinkState]


class MonteCarloSession:
    """
    Monte-Carlo error-rate measurement with adaptive retraining.
    """

    def __init__(
        self,
        config: DmtConfig,
        state: LinkState,
        transmit: Optional[TransmitFn] = None,
        retrain: Optional[RetrainFn] = None
    ):
        """
        Initialize session.

        Args:
            config: Link configuration (caps, retraining guard, workers, seed)
            state: Initial loading
            transmit: Runs one batch against a LinkState. Only needed by
                step()/run(); record() can be fed counts directly
            retrain: Builds a new LinkState from the smoothed transmit
                autocorrelation (None when none was recorded)
        """
        self.config = config
        self.state = state
        self._transmit = transmit
        self._retrain = retrain

        self.status = SessionState.INIT
        self.counters = SessionCounters.zeros(len(state.modems.loaded))
        self.rxx: Optional[np.ndarray] = None
        self.retrainings = 0
        self.total_iterations = 0
        self.stop_reason: Optional[StopReason] = None
        self._limit_warned = False

        self._seed_sequence = np.random.SeedSequence(config.seed)
        self._started_ms: Optional[int] = None
        self._elapsed_ms = 0.0

    # ========================================
    # State machine
    # ========================================

    def start(self):
        """INIT -> RUNNING, or straight to DONE when nothing is loaded."""
        if self.status != SessionState.INIT:
            raise RuntimeError(f"Session already started ({self.status.value})")

        self._started_ms = get_timestamp_ms()
        self.counters = SessionCounters.zeros(len(self.state.modems.loaded))

        if not self.state.is_feasible:
            logger.warning("No subchannel is loaded, skipping Monte-Carlo")
            self._finish(StopReason.INFEASIBLE)
            return

        self.status = SessionState.RUNNING
        logger.info(
            f"Monte-Carlo started: {len(self.state.modems.loaded)} loaded subchannels, "
            f"theoretical Pe_bar={self.state.pe_bar:.3g}"
        )

    def _finish(self, reason: StopReason):
        self.status = SessionState.DONE
        self.stop_reason = reason
        if self._started_ms is not None:
            self._elapsed_ms = get_timestamp_ms() - self._started_ms
        logger.info(
            f"Monte-Carlo done ({reason.value}): errors={self.counters.num_errors}, "
            f"symbols={self.counters.n_symbols}, retrainings={self.retrainings}"
        )

    @property
    def done(self) -> bool:
        return self.status == SessionState.DONE

    def should_retrain(self) -> bool:
        """Guard of the RUNNING -> RETRAINING transition."""
        if self.counters.n_symbols <= self.config.retrain_min_symbols:
            return False
        ser = self.counters.ser_per_dimension(self.state.loaded_dims)
        if len(ser) == 0 or float(np.mean(ser)) <= self.config.retrain_factor * self.state.pe_bar:
            return False

        limit = self.config.max_retrainings
        if limit is not None and self.retrainings >= limit:
            if not self._limit_warned:
                logger.warning(
                    f"Measured Pe_bar {np.mean(ser):.3g} still above target after "
                    f"{limit} retrainings, keeping the current loading"
                )
                self._limit_warned = True
            return False
        return True

    def record(
        self,
        symbol_errors: np.ndarray,
        n_symbols: int,
        tx_autocorr: Optional[np.ndarray] = None
    ) -> bool:
        """
        Accumulate the outcome of one iteration.

        Args:
            symbol_errors: Errors per loaded subchannel
            n_symbols: DMT symbols in the iteration
            tx_autocorr: Transmit autocorrelation measured in the iteration

        Returns:
            True when the iteration triggered a retraining
        """
        if self.status == SessionState.INIT:
            self.start()
        if self.status != SessionState.RUNNING:
            raise RuntimeError(f"Cannot record while {self.status.value}")

        symbol_errors = np.asarray(symbol_errors, dtype=int)
        if symbol_errors.shape != self.counters.symbol_errors.shape:
            raise ValueError(
                f"Expected errors for {len(self.counters.symbol_errors)} "
                f"loaded subchannels, got shape {symbol_errors.shape}"
            )

        self.counters.symbol_errors = self.counters.symbol_errors + symbol_errors
        self.counters.n_symbols += int(n_symbols)
        self.counters.iterations += 1
        self.total_iterations += 1

        if tx_autocorr is not None:
            tx_autocorr = np.asarray(tx_autocorr, dtype=float)
            self.rxx = tx_autocorr if self.rxx is None else (tx_autocorr + self.rxx) / 2

        logger.debug(
            f"Iteration {self.counters.iterations}: "
            f"Pe_bar={np.mean(self.counters.ser_per_dimension(self.state.loaded_dims)):.3g}, "
            f"errors={self.counters.num_errors}, symbols={self.counters.n_symbols}"
        )

        if self.should_retrain():
            self._do_retrain()
            return True

        if self.counters.num_errors >= self.config.max_num_errors:
            self._finish(StopReason.MAX_ERRORS)
        elif self.counters.iterations >= self.config.max_iterations:
            self._finish(StopReason.MAX_ITERATIONS)
        return False

    def _do_retrain(self):
        self.status = SessionState.RETRAINING
        self.retrainings += 1
        logger.info(
            f"Retraining #{self.retrainings}: measured Pe_bar above "
            f"{self.config.retrain_factor:g} x {self.state.pe_bar:.3g} "
            f"after {self.counters.n_symbols} symbols"
        )

        if self._retrain is None:
            raise RuntimeError("Retraining fired but no retrain callable was given")
        self.state = self._retrain(self.rxx)
        self.counters = SessionCounters.zeros(len(self.state.modems.loaded))

        if not self.state.is_feasible:
            self._finish(StopReason.INFEASIBLE)
            return
        self.status = SessionState.RUNNING
        logger.info(f"Restarting transmission, theoretical Pe_bar={self.state.pe_bar:.3g}")

    # ========================================
    # Transmission
    # ========================================

    def _spawn_rngs(self, count: int) -> List[np.random.Generator]:
        return [np.random.default_rng(s) for s in self._seed_sequence.spawn(count)]

    def step(self, executor: Optional[ThreadPoolExecutor] = None) -> bool:
        """
        Run one iteration: transmit batch(es) and record them.

        Returns:
            True when the iteration triggered a retraining
        """
        if self.status == SessionState.INIT:
            self.start()
        if self.done:
            return False
        if self._transmit is None:
            raise RuntimeError("No transmit callable was given")

        state = self.state
        rngs = self._spawn_rngs(max(1, self.config.workers))

        if executor is None or len(rngs) == 1:
            batches = [self._transmit(state, rng) for rng in rngs]
        else:
            batches = list(executor.map(lambda rng: self._transmit(state, rng), rngs))

        errors = np.sum([b.symbol_errors for b in batches], axis=0)
        n_symbols = sum(b.n_symbols for b in batches)
        rxx = np.mean([b.tx_autocorr for b in batches], axis=0)
        return self.record(errors, n_symbols, rxx)

    def run(self) -> MonteCarloResult:
        """Iterate until DONE and return the final statistics."""
        if self.status == SessionState.INIT:
            self.start()

        if self.config.workers > 1:
            with ThreadPoolExecutor(max_workers=self.config.workers) as executor:
                while not self.done:
                    self.step(executor)
        else:
            while not self.done:
                self.step()

        return self.result()

    def result(self) -> MonteCarloResult:
        """Statistics of the session so far."""
        ser = self.counters.ser_per_dimension(self.state.loaded_dims)
        return MonteCarloResult(
            ser_n=ser,
            pe_bar_measured=float(np.mean(ser)) if len(ser) else 0.0,
            pe_bar_theoretical=self.state.pe_bar,
            num_errors=self.counters.num_errors,
            n_symbols=self.counters.n_symbols,
            iterations=self.counters.iterations,
            total_iterations=self.total_iterations,
            retrainings=self.retrainings,
            stop_reason=self.stop_reason,
            elapsed_ms=self._elapsed_ms,
        )

    def get_stats(self) -> dict:
        """Get session statistics."""
        return {
            'status': self.status.value,
            'num_errors': self.counters.num_errors,
            'n_symbols': self.counters.n_symbols,
            'iterations': self.counters.iterations,
            'total_iterations': self.total_iterations,
            'retrainings': self.retrainings,
        }
