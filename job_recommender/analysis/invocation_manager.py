"""
AI Invocation Manager - The only path from the engine to the analysis service.

Responsibilities:
1. Content-addressed caching of results within a validity window
2. Queuing low-priority bulk requests and submitting them in batches
3. Retrying transient failures with exponential backoff, bounded attempts
   and a hard wall-clock timeout per call
4. Recording size and estimated cost of every external call
"""

from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional, Union
import hashlib
import json
import logging
import random
import threading
import time

from job_recommender.analysis.client import AnalysisClient, RawResponse
from job_recommender.analysis.cost import CostLedger
from job_recommender.analysis.results import AnalysisResult, InvocationKind, MalformedResult, parse_result
from job_recommender.core.exceptions import (
    AnalysisUnavailable,
    PermanentAnalysisError,
    TransientAnalysisError,
)
from job_recommender.utils.storage import append_jsonl, read_jsonl


def request_key(kind: InvocationKind, payload: dict) -> str:
    """Content hash of a request: same kind and same input give the same key."""
    canonical = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(f"{kind.value}\n{canonical}".encode("utf-8")).hexdigest()


@dataclass
class AnalysisRequest:
    """A request as submitted; kept intact when it fails so it can be replayed."""
    kind: InvocationKind
    payload: dict
    key: str
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def input_chars(self) -> int:
        return len(json.dumps(self.payload, default=str))


@dataclass
class _CacheEntry:
    result: AnalysisResult
    stored_at: datetime


class AIInvocationManager:
    """Mediates every call to the analysis service."""

    def __init__(
        self,
        client: AnalysisClient,
        ledger: Optional[CostLedger] = None,
        cache_ttl_seconds: float = 7 * 24 * 3600,
        max_attempts: int = 4,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        timeout_seconds: float = 60.0,
        max_concurrency: int = 4,
        batch_size: int = 10,
        jitter: bool = True,
        cache_path: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.client = client
        self.ledger = ledger or CostLedger()
        self.cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout_seconds = timeout_seconds
        self.max_concurrency = max_concurrency
        self.batch_size = batch_size
        self.jitter = jitter
        self.clock = clock
        self.sleep = sleep
        self.logger = logging.getLogger(self.__class__.__name__)

        self.failed_requests: list[AnalysisRequest] = []

        self._cache: dict[str, _CacheEntry] = {}
        self._inflight: dict[str, Future] = {}
        self._queue: list[tuple[AnalysisRequest, Future]] = []
        self._lock = threading.Lock()
        self._slots = threading.BoundedSemaphore(max_concurrency)
        # Timed-out calls keep their worker until they return, so leave headroom
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrency * 4,
            thread_name_prefix="analysis",
        )

        self.cache_path = Path(cache_path) if cache_path else None
        if self.cache_path:
            self._load_cache()

    def invoke(self, kind: InvocationKind, payload: dict) -> AnalysisResult:
        """
        Run an analysis request now, or answer it from the cache.

        Raises:
            AnalysisUnavailable: transient failures outlasted the retry policy
            PermanentAnalysisError: the service rejected the request
        """
        request = self._request(kind, payload)

        cached = self._cached(request)
        if cached is not None:
            return cached

        with self._lock:
            leader = self._inflight.get(request.key)
            if leader is None:
                future: Future = Future()
                self._inflight[request.key] = future

        if leader is not None:
            # Identical request already running; share its answer
            return leader.result()

        try:
            result = self._call_with_retry(request)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._inflight.pop(request.key, None)

    def submit(self, kind: InvocationKind, payload: dict) -> Future:
        """
        Queue a low-priority request for the next batch.

        Returns:
            A Future resolved by `flush()` (immediately on a cache hit)
        """
        request = self._request(kind, payload)
        future: Future = Future()

        cached = self._cached(request)
        if cached is not None:
            future.set_result(cached)
            return future

        with self._lock:
            self._queue.append((request, future))
            queued = len(self._queue)

        self.logger.debug(f"Queued {kind.value} request ({queued} waiting)")
        return future

    @property
    def queued(self) -> int:
        with self._lock:
            return len(self._queue)

    def flush(self) -> int:
        """
        Submit all queued requests in batches of `batch_size`.

        Returns:
            Number of requests that went to the service
        """
        with self._lock:
            queue, self._queue = self._queue, []

        # Collapse identical requests; answer cache hits without a call
        pending: dict[str, list[tuple[AnalysisRequest, Future]]] = {}
        for request, future in queue:
            cached = self._cached(request)
            if cached is not None:
                future.set_result(cached)
                continue
            pending.setdefault(request.key, []).append((request, future))

        unique = [entries[0][0] for entries in pending.values()]
        try:
            for start in range(0, len(unique), self.batch_size):
                batch = unique[start:start + self.batch_size]
                outcomes = self._run_batch(batch)
                for request in batch:
                    outcome = outcomes[request.key]
                    for _, future in pending[request.key]:
                        if isinstance(outcome, BaseException):
                            future.set_exception(outcome)
                        else:
                            future.set_result(outcome)
        except Exception as e:
            # Nobody waits forever: whatever was not answered fails with the cause
            for request in unique:
                entries = pending[request.key]
                if all(future.done() for _, future in entries):
                    continue
                self._preserve(request)
                error = AnalysisUnavailable(request.kind.value, request.key, 0, e)
                for _, future in entries:
                    if not future.done():
                        future.set_exception(error)
            raise

        if unique:
            self.logger.info(f"Flushed {len(unique)} queued request(s) in "
                             f"{(len(unique) + self.batch_size - 1) // self.batch_size} batch(es)")
        return len(unique)

    def retry_failed(self) -> list[Union[AnalysisResult, Exception]]:
        """Replay requests that previously ended in AnalysisUnavailable."""
        with self._lock:
            failed, self.failed_requests = self.failed_requests, []

        outcomes: list[Union[AnalysisResult, Exception]] = []
        for request in failed:
            try:
                outcomes.append(self.invoke(request.kind, request.payload))
            except (AnalysisUnavailable, PermanentAnalysisError) as e:
                outcomes.append(e)
        return outcomes

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def cost_summary(self) -> dict:
        return self.ledger.summary()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    def _request(self, kind: InvocationKind, payload: dict) -> AnalysisRequest:
        kind = InvocationKind(kind)
        return AnalysisRequest(kind=kind, payload=payload, key=request_key(kind, payload), created_at=self.clock())

    def _cached(self, request: AnalysisRequest) -> Optional[AnalysisResult]:
        with self._lock:
            entry = self._cache.get(request.key)
            if entry is None:
                return None
            if self.clock() - entry.stored_at > self.cache_ttl:
                del self._cache[request.key]
                return None

        self.ledger.record_cache_hit(request.kind.value)
        self.logger.debug(f"Cache hit for {request.kind.value} {request.key[:12]}")
        return entry.result

    def _store(self, request: AnalysisRequest, result: AnalysisResult) -> None:
        stored_at = self.clock()
        with self._lock:
            self._cache[request.key] = _CacheEntry(result, stored_at)
            if self.cache_path:
                append_jsonl(self.cache_path, {
                    "key": request.key,
                    "kind": request.kind.value,
                    "stored_at": stored_at.isoformat(),
                    "result": result.to_payload(),
                })

    def _load_cache(self) -> None:
        now = self.clock()
        for data in read_jsonl(self.cache_path):
            stored_at = datetime.fromisoformat(data["stored_at"])
            if now - stored_at > self.cache_ttl:
                continue
            try:
                result = parse_result(InvocationKind(data["kind"]), data["result"])
            except (MalformedResult, ValueError) as e:
                self.logger.warning(f"Ignoring unreadable cache entry {data.get('key', '?')[:12]}: {e}")
                continue
            self._cache[data["key"]] = _CacheEntry(result, stored_at)
        self.logger.debug(f"Loaded {len(self._cache)} cached analysis results")

    def _delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= 0.5 + random.random()
        return delay

    def _with_timeout(self, fn: Callable, *args):
        """Run fn under the hard wall-clock timeout; a timeout is a transient failure."""
        with self._slots:
            future = self._executor.submit(fn, *args)
            try:
                return future.result(timeout=self.timeout_seconds)
            except FutureTimeout:
                # The call can't be interrupted; its late answer is dropped
                raise TransientAnalysisError(f"No answer within {self.timeout_seconds}s") from None

    def _call_with_retry(self, request: AnalysisRequest) -> AnalysisResult:
        kind = request.kind.value
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                response: RawResponse = self._with_timeout(self.client.invoke, request.kind, request.payload)
                result = parse_result(request.kind, response.data)
            except PermanentAnalysisError as e:
                self._record(request, None, False, attempt)
                self.logger.error(f"{kind} rejected by analysis service: {e}")
                raise
            except (TransientAnalysisError, MalformedResult) as e:
                self._record(request, None, False, attempt)
                last_error = e
                if attempt == self.max_attempts:
                    break
                delay = self._delay(attempt)
                self.logger.warning(
                    f"{kind} attempt {attempt}/{self.max_attempts} failed ({e}), retrying in {delay:.1f}s"
                )
                self.sleep(delay)
                continue

            self._record(request, response, True, attempt)
            self._store(request, result)
            self.logger.info(f"{kind} answered on attempt {attempt}")
            return result

        self.logger.error(f"{kind} failed after {self.max_attempts} attempts: {last_error}")
        self._preserve(request)
        raise AnalysisUnavailable(kind, request.key, self.max_attempts, last_error)

    def _run_batch(self, batch: list[AnalysisRequest]) -> dict[str, Union[AnalysisResult, BaseException]]:
        outcomes: dict[str, Union[AnalysisResult, BaseException]] = {}
        remaining = list(batch)
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                responses = self._with_timeout(
                    self.client.invoke_batch, [(r.kind, r.payload) for r in remaining]
                )
            except TransientAnalysisError as e:
                for request in remaining:
                    self._record(request, None, False, attempt, batched=True)
                last_error = e
                responses = None
            except Exception as e:
                # The submission failed as a whole; no item was judged on its own
                self.logger.error(f"Batch of {len(remaining)} request(s) rejected: {e}")
                for request in remaining:
                    self._record(request, None, False, attempt, batched=True)
                    self._preserve(request)
                    outcomes[request.key] = AnalysisUnavailable(request.kind.value, request.key, attempt, e)
                return outcomes

            if responses is not None:
                retry = []
                for request, response in zip(remaining, responses):
                    if isinstance(response, PermanentAnalysisError):
                        self._record(request, None, False, attempt, batched=True)
                        outcomes[request.key] = response
                        continue
                    if isinstance(response, Exception):
                        self._record(request, None, False, attempt, batched=True)
                        last_error = response
                        retry.append(request)
                        continue
                    try:
                        result = parse_result(request.kind, response.data)
                    except MalformedResult as e:
                        self._record(request, None, False, attempt, batched=True)
                        last_error = e
                        retry.append(request)
                        continue
                    self._record(request, response, True, attempt, batched=True)
                    self._store(request, result)
                    outcomes[request.key] = result
                remaining = retry

            if not remaining:
                return outcomes
            if attempt < self.max_attempts:
                delay = self._delay(attempt)
                self.logger.warning(
                    f"Batch attempt {attempt}/{self.max_attempts}: {len(remaining)} request(s) "
                    f"failed ({last_error}), retrying in {delay:.1f}s"
                )
                self.sleep(delay)

        for request in remaining:
            self._preserve(request)
            outcomes[request.key] = AnalysisUnavailable(
                request.kind.value, request.key, self.max_attempts, last_error
            )
        self.logger.error(f"{len(remaining)} batched request(s) failed after {self.max_attempts} attempts")
        return outcomes

    def _preserve(self, request: AnalysisRequest) -> None:
        with self._lock:
            self.failed_requests.append(request)

    def _record(
        self,
        request: AnalysisRequest,
        response: Optional[RawResponse],
        success: bool,
        attempt: int,
        batched: bool = False,
    ) -> None:
        output_chars = len(json.dumps(response.data, default=str)) if response else 0
        self.ledger.record_call(
            kind=request.kind.value,
            request_key=request.key,
            input_chars=request.input_chars,
            output_chars=output_chars,
            success=success,
            attempt=attempt,
            timestamp=self.clock(),
            input_tokens=response.input_tokens if response else None,
            output_tokens=response.output_tokens if response else None,
            batched=batched,
        )
