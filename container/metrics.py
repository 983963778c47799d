import threading

from executor import config
from executor.utils import logger, short_id
from .command import run_command
from .runtime import ContainerRuntime

RSS_COMMAND = ['sh', '-c', 'ps -o rss= -p 1']


class _PeakSampler:

    def __init__(self):
        self.lock = threading.Lock()
        self.peak = 0
        # set by the first sample, or when the feed ends without one
        self.sampled = threading.Event()
        self.stop = threading.Event()

    def offer(self, usage: int):
        with self.lock:
            self.peak = max(self.peak, usage)
        self.sampled.set()

    def value(self) -> int:
        with self.lock:
            return self.peak


class MemoryCollector:
    '''
    Best-effort memory measurement of a container.

    The runtime's streaming stats feed is read until its first memory
    sample arrives, waiting at most ``window`` seconds, and the largest
    ``memory_stats.usage`` seen by then is reported. Without any
    sample, the resident set size of the container's init process is
    read with ``ps`` instead. Failures only yield 0.
    '''

    def __init__(self,
                 runtime: ContainerRuntime,
                 window: float = config.STATS_WAIT_TIME):
        self.runtime = runtime
        self.window = window

    def collect(self, container_id: str) -> int:
        try:
            usage = self._collect_stats(container_id)
        except Exception as e:
            logger().warning(
                f'failed to collect stats of {short_id(container_id)}: {e}')
            usage = 0
        if usage > 0:
            return usage
        return self._collect_rss(container_id)

    def _collect_stats(self, container_id: str) -> int:
        sampler = _PeakSampler()
        self.runtime.submit(self._read_stats, container_id, sampler)
        sampler.sampled.wait(self.window)
        sampler.stop.set()
        peak = sampler.value()
        if not peak:
            logger().warning(
                f'no stats sample of {short_id(container_id)} within '
                f'{self.window}s')
        return peak

    def _read_stats(self, container_id: str, sampler: _PeakSampler):
        try:
            stream = self.runtime.client.stats(container_id,
                                               decode=True,
                                               stream=True)
            for stats in stream:
                usage = ((stats or {}).get('memory_stats') or {}).get('usage')
                if usage:
                    sampler.offer(int(usage))
                if sampler.stop.is_set():
                    break
        except Exception as e:
            logger().warning(
                f'stats stream of {short_id(container_id)} failed: {e}')
        finally:
            sampler.sampled.set()

    def _collect_rss(self, container_id: str) -> int:
        try:
            result = run_command(self.runtime, container_id, RSS_COMMAND)
        except Exception as e:
            logger().warning(f'failed to read rss: {e}')
            return 0
        text = result.output.strip()
        try:
            return int(text) * 1024
        except ValueError:
            logger().warning(f'cannot parse memory usage: {text!r}')
            return 0
