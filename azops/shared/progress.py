import time


class Progress:
    """Percent-complete reporter; emits a line only when the integer percentage moves."""

    def __init__(self, label: str, total: int, log=None):
        self.label = label
        self.total = total
        self.done = 0
        self.t0 = time.time()
        self._log = log or print
        self._last_pct = 0

    def advance(self, n: int = 1) -> None:
        self.done += n
        if self.total <= 0:
            return
        pct = max(0, min(100, self.done * 100 // self.total))
        if pct == self._last_pct:
            return
        self._last_pct = pct
        elapsed = max(0.001, time.time() - self.t0)
        rate = self.done / elapsed
        eta = int((self.total - self.done) / rate) if rate > 0 else -1
        self._log(f"[{self.label}] {pct}% | {self.done}/{self.total} | elapsed={elapsed:.1f}s | ETA~{eta}s")
