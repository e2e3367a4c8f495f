"""
zero_reveal_credentials/poseidon.py
Circuit-compatible Poseidon backend backed by circomlibjs.

The credential circuit hashes with circomlib's Poseidon over BN254. This
backend runs circomlibjs' buildPoseidon() in one long-lived Node.js worker
and exchanges one JSON line per hash, so roots and paths built here are
the values the circuit recomputes.

Setup:
    npm install circomlibjs
    ZRC_HASH_BACKEND=poseidon ZRC_POSEIDON_NODE_PATH=./node_modules
"""
import json
import os
import subprocess
import threading
import weakref
from typing import Optional, Sequence

from .config import get_settings
from .errors import HashUnavailableError
from .field import FieldElement, to_decimal
from .logger import get_logger

logger = get_logger(__name__)

# circomlibjs ships round constants for 1..16 inputs
MAX_POSEIDON_INPUTS = 16
READY_LINE = 'ready'
ERROR_PREFIX = 'error:'

_WORKER_SOURCE = r"""
const readline = require('readline');
const { buildPoseidon } = require('circomlibjs');
buildPoseidon().then((poseidon) => {
  const rl = readline.createInterface({ input: process.stdin });
  process.stdout.write('ready\n');
  rl.on('line', (line) => {
    try {
      const inputs = JSON.parse(line).map((v) => BigInt(v));
      process.stdout.write(poseidon.F.toObject(poseidon(inputs)).toString() + '\n');
    } catch (err) {
      process.stdout.write('error:' + String(err.message || err).replace(/\n/g, ' ') + '\n');
    }
  });
}).catch((err) => {
  process.stderr.write(String(err && err.stack || err));
  process.exit(1);
});
"""


def _stop_worker(process: subprocess.Popen) -> None:
    if process.poll() is None:
        process.stdin.close()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()


class CircomPoseidonHasher:
    """Poseidon(inputs) exactly as circomlib's Poseidon template computes it.

    Example:
        hasher = CircomPoseidonHasher()
        hasher([1, 2])
        # 7853200120776062878684798364095072458815029376092732009249414926327459813530

    Raises:
        HashUnavailableError: If Node.js or circomlibjs cannot be started
    """

    name = 'poseidon'

    def __init__(self, node_bin: Optional[str] = None, node_path: Optional[str] = None):
        settings = get_settings()
        self.node_bin = node_bin or settings.poseidon_node_bin
        self.node_path = node_path or settings.poseidon_node_path
        self._lock = threading.Lock()
        self._process = self._start()
        self._finalizer = weakref.finalize(self, _stop_worker, self._process)

    def _start(self) -> subprocess.Popen:
        env = dict(os.environ)
        if self.node_path:
            existing = env.get('NODE_PATH')
            env['NODE_PATH'] = os.pathsep.join(p for p in (self.node_path, existing) if p)

        try:
            process = subprocess.Popen(
                [self.node_bin, '-e', _WORKER_SOURCE],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1,
                env=env,
            )
        except OSError as exc:
            raise HashUnavailableError(
                f"Cannot start Node.js at '{self.node_bin}' for the poseidon backend: {exc}"
            ) from exc

        first = process.stdout.readline().strip()
        if first != READY_LINE:
            _stop_worker(process)
            detail = process.stderr.read().strip() or first or "worker exited"
            raise HashUnavailableError(
                f"circomlibjs Poseidon failed to load: {detail.splitlines()[0]}"
            )

        logger.info("poseidon_worker_started", node_bin=self.node_bin, pid=process.pid)
        return process

    def __call__(self, inputs: Sequence[FieldElement]) -> FieldElement:
        arity = len(inputs)
        if not 1 <= arity <= MAX_POSEIDON_INPUTS:
            raise ValueError(f"Unsupported hash arity: {arity}")
        request = json.dumps([to_decimal(v) for v in inputs])

        with self._lock:
            if self._process.poll() is not None:
                raise HashUnavailableError("Poseidon worker is not running")
            try:
                self._process.stdin.write(request + '\n')
                self._process.stdin.flush()
                reply = self._process.stdout.readline().strip()
            except (BrokenPipeError, ValueError) as exc:
                raise HashUnavailableError(f"Poseidon worker I/O failed: {exc}") from exc

        if not reply:
            raise HashUnavailableError("Poseidon worker exited without a reply")
        if reply.startswith(ERROR_PREFIX):
            raise HashUnavailableError(f"Poseidon worker rejected input: {reply[len(ERROR_PREFIX):]}")
        return int(reply)

    def close(self) -> None:
        """Stop the worker; later calls raise HashUnavailableError."""
        self._finalizer()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(node_bin={self.node_bin!r})"
