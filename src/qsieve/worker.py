"""
Run factoring requests off the caller's thread.

A SieveWorker takes one integer per submit() and answers with zero or more
progress notifications followed by exactly one result notification
([p, q] or [N]). Notifications are fire-and-forget: the sieve never waits
for them to be consumed.

WARNING: "multithreading" is GIL-bound. It keeps the caller responsive but
does not make the sieve faster. Use "multiprocessing" for real parallelism
across several requests.
"""

import multiprocessing
import sys
import threading
import concurrent.futures as futures
from typing import Callable, Literal

import tqdm

from qsieve.sieve import ProgressCallback, quadratic_sieve

ResultCallback = Callable[[list[int]], None]

class TqdmProgress:
    """Progress callback drawing a tqdm bar from the sieving ratio in [0, 1]."""

    def __init__(self, desc: str="Sieving", **tqdm_kwargs):
        tqdm_kwargs.setdefault("file", sys.stderr)
        self.pbar = tqdm.tqdm(total=1000, desc=desc, **tqdm_kwargs)

    def __call__(self, ratio: float):
        n = min(1000, int(ratio * 1000))
        if n > self.pbar.n:
            self.pbar.update(n - self.pbar.n)

    def close(self):
        self.pbar.close()

def _deliver(callback, value, what: str):
    if callback is None:
        return
    try:
        callback(value)
    except Exception as e:
        tqdm.tqdm.write(f"{what} callback failed: {e!r}", file=sys.stderr)

def _process_entry(N, sieve_kwargs, queue):
    """Multi-processing compatible helper; progress goes back over the manager queue."""
    progress = queue.put if queue is not None else None
    return quadratic_sieve(N, progress=progress, **sieve_kwargs)

class SieveWorker:
    """
    Executor for factoring requests.

    :param jobs: Number of requests run at the same time.
    :param variant: "multithreading" or "multiprocessing".
    :param sieve_kwargs: Passed on to quadratic_sieve for every request.
    """

    def __init__(self,
            jobs: int=1,
            variant: Literal["multithreading", "multiprocessing"]="multithreading",
            **sieve_kwargs):
        if jobs < 1:
            raise ValueError("jobs must be at least 1")
        if "progress" in sieve_kwargs:
            raise ValueError("pass progress callbacks to submit(), not to the worker")

        self.variant = variant
        self.sieve_kwargs = sieve_kwargs
        self._manager = None
        self._listeners = []

        if variant == "multithreading":
            self._executor = futures.ThreadPoolExecutor(max_workers=jobs)
        elif variant == "multiprocessing":
            self._executor = futures.ProcessPoolExecutor(max_workers=jobs)
        else: raise ValueError("variant must be 'multiprocessing' or 'multithreading'")

    def submit(self,
            N: int,
            on_result: ResultCallback|None=None,
            on_progress: ProgressCallback|None=None,
            ) -> futures.Future:
        """
        Start factoring N.

        :param N: The integer to be factored.
        :param on_result: Called once with [p, q] or [N] when the run finishes.
        :param on_progress: Called with the sieving ratio after each new relation.
        :return: Future resolving to the same list on_result receives. Errors in the
            arguments (e.g. N < 2) surface as the future's exception and skip on_result.
        """
        if self.variant == "multithreading":
            return self._executor.submit(self._run, N, on_result, on_progress)

        queue = None
        if on_progress is not None or on_result is not None:
            queue = self._get_manager().Queue()
        future = self._executor.submit(_process_entry, N, self.sieve_kwargs, queue if on_progress else None)
        if queue is not None:
            # one listener per request keeps notifications in order
            listener = threading.Thread(
                target=self._listen, args=(queue, future, on_result, on_progress), daemon=True)
            listener.start()
            self._listeners.append(listener)
            future.add_done_callback(lambda _: queue.put(None))
        return future

    def _run(self, N, on_result, on_progress):
        result = quadratic_sieve(N, progress=on_progress, **self.sieve_kwargs)
        _deliver(on_result, result, "Result")
        return result

    @staticmethod
    def _listen(queue, future, on_result, on_progress):
        """Forward progress from the worker process, then the result once it is done."""
        while True:
            item = queue.get()
            if item is None:
                break
            _deliver(on_progress, item, "Progress")
        if future.exception() is None:
            _deliver(on_result, future.result(), "Result")

    def _get_manager(self):
        if self._manager is None:
            self._manager = multiprocessing.Manager()
        return self._manager

    def close(self, wait: bool=True):
        self._executor.shutdown(wait=wait)
        if not wait:
            return
        for listener in self._listeners:
            listener.join()
        self._listeners = []
        if self._manager is not None:
            self._manager.shutdown()
            self._manager = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
