from functools import lru_cache
from multiprocessing.connection import Connection
from typing import Any, Optional, Tuple
import asyncio
import multiprocessing

from jinja2.exceptions import SecurityError, TemplateSyntaxError
from jinja2.sandbox import ImmutableSandboxedEnvironment

from .formatter import HookMessage

API_VERSION = "v2"
TIMEOUT_SECONDS = 0.5
# Bounds on sequence repetition and exponentiation inside a script.
MAX_SEQUENCE_LENGTH = 100_000
MAX_EXPONENT = 1_000

# Children must inherit the already-imported plugin: maubot loads it from a
# .mbp archive that neither spawn nor forkserver can re-import, and a fresh
# interpreter would eat most of the time limit. Forking the threaded maubot
# process warns on Python 3.12+; spawn is only a fallback for hosts without fork.
START_METHOD = "fork" if "fork" in multiprocessing.get_all_start_methods() else "spawn"
_mp = multiprocessing.get_context(START_METHOD)


class TransformationCompileError(Exception):
    pass


class TransformationError(Exception):
    pass


class HookSandbox(ImmutableSandboxedEnvironment):
    """
    Jinja sandbox for transformation scripts.

    Scripts get no globals besides the bindings passed at execution time,
    cannot mutate the payload and cannot build oversized values with `*`/`**`.
    """

    intercepted_binops = frozenset(["*", "**"])

    def __init__(self) -> None:
        super().__init__(autoescape=False)
        self.globals.clear()

    def call_binop(self, context: Any, operator: str, left: Any, right: Any) -> Any:
        if operator == "**" and isinstance(right, int) and abs(right) > MAX_EXPONENT:
            raise SecurityError("exponent too large")
        if operator == "*":
            for seq, count in ((left, right), (right, left)):
                if (isinstance(seq, (str, list, tuple)) and isinstance(count, int)
                        and len(seq) * count > MAX_SEQUENCE_LENGTH):
                    raise SecurityError("sequence too long")
        return super().call_binop(context, operator, left, right)


_sandbox = HookSandbox()


@lru_cache(maxsize=256)
def compile_script(source: str):
    return _sandbox.from_string(source)


def interpret_result(result: Any) -> Optional[HookMessage]:
    # v1 scripts returned a bare string
    if isinstance(result, str):
        return HookMessage(plain=f"Received webhook: {result}")
    if not isinstance(result, (dict, list, tuple)):
        return HookMessage(plain="No content")
    if not isinstance(result, dict) or result.get("version") != API_VERSION:
        raise TransformationError(
            f"Result returned from transformation didn't specify version = {API_VERSION}"
        )
    if result.get("empty"):
        return None

    plain = result.get("plain")
    if not isinstance(plain, str):
        raise TransformationError(
            "Result returned from transformation didn't provide a string value for plain"
        )
    html = result.get("html") or None
    msgtype = result.get("msgtype") or None
    if html is not None and not isinstance(html, str):
        raise TransformationError(
            "Result returned from transformation didn't provide a string value for html"
        )
    if msgtype is not None and not isinstance(msgtype, str):
        raise TransformationError(
            "Result returned from transformation didn't provide a string value for msgtype"
        )
    return HookMessage(
        plain=str(plain),
        html=str(html) if html is not None else None,
        msgtype=str(msgtype) if msgtype is not None else None,
    )


def run_script(source: str, data: Any) -> Optional[HookMessage]:
    """Run a script in the current process. Has no time bound of its own."""
    module = compile_script(source).make_module({"api_version": API_VERSION, "data": data})
    return interpret_result(getattr(module, "result", None))


def _child_main(source: str, data: Any, conn: Connection) -> None:
    try:
        reply: Tuple[str, Any] = ("ok", run_script(source, data))
    except Exception as e:
        reply = ("error", f"{type(e).__name__}: {e}")
    try:
        conn.send(reply)
    finally:
        conn.close()


class TransformationFunction:
    """A compiled user script, executed in a throwaway child process per hook."""

    def __init__(self, source: str, timeout: float = TIMEOUT_SECONDS) -> None:
        try:
            compile_script(source)
        except TemplateSyntaxError as e:
            raise TransformationCompileError(f"line {e.lineno}: {e.message}") from e
        self.source = source
        self.timeout = timeout

    async def execute(self, data: Any) -> Optional[HookMessage]:
        recv_conn, send_conn = _mp.Pipe(duplex=False)
        proc = _mp.Process(target=_child_main, args=(self.source, data, send_conn), daemon=True)
        proc.start()
        send_conn.close()
        try:
            ready = await asyncio.to_thread(recv_conn.poll, self.timeout)
            if not ready:
                raise TransformationError(f"Transformation timed out after {self.timeout * 1000:.0f}ms")
            try:
                status, value = recv_conn.recv()
            except EOFError as e:
                raise TransformationError(f"Transformation exited with code {proc.exitcode}") from e
        finally:
            recv_conn.close()
            if proc.is_alive():
                proc.kill()
            await asyncio.to_thread(proc.join)
            proc.close()
        if status != "ok":
            raise TransformationError(value)
        return value
