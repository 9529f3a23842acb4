"""
Streaming lifecycle for ``StarResponse.stream()``.

The user callback is ordinary blocking code. It runs on a worker thread and
every event it produces is put on an in-order queue; the
``StreamingHttpResponse`` generator drains that queue and hands each frame to
the server as soon as it is produced::

    view thread                         worker thread
    -----------                         -------------
    yield queued events
    start worker  ─────────────────▶    callback(response)
    yield frame ◀── queue ◀──────────   response.append(...)
    yield frame ◀── queue ◀──────────   response.signals(...)
    (sentinel) ◀── queue ◀───────────   done / terminated / failed

While the callback runs:

- text written to ``sys.stdout`` by the callback's thread is captured and,
  when non-empty, replaces the client document once the callback returns
- ``response.location(url)`` and returned redirects become a client-side
  location change and end the stream
- ``response.dump(*values)`` replaces the document with a diagnostic page and
  ends the stream
- an uncaught exception replaces the document with Django's error page

A client disconnect closes the generator; later emits raise ``StreamClosed``
inside the callback and the stream ends silently.
"""

import contextvars
import io
import logging
import queue
import sys
import threading
from typing import Callable, Dict, Iterator, Optional

from django.db import connections
from django.utils.html import escape

from .exceptions import StreamClosed, StreamTerminated
from .redirect import StarRedirect
from .security import log_exception_safely, render_exception_page
from .sse import sse_comment

logger = logging.getLogger(__name__)

# Seconds without an event before a keep-alive comment is sent
KEEPALIVE_TIMEOUT = 25

_SENTINEL = None


class StreamSink:
    """In-order hand-off of encoded frames from the worker to the generator."""

    def __init__(self):
        self.queue: "queue.Queue[Optional[str]]" = queue.Queue()
        self.closed = False

    def put(self, frame: str) -> None:
        if self.closed:
            raise StreamClosed()
        self.queue.put(frame)

    def finish(self) -> None:
        self.queue.put(_SENTINEL)

    def close(self) -> None:
        self.closed = True


class _ThreadStdout(io.TextIOBase):
    """
    ``sys.stdout`` replacement that captures writes per thread.

    Threads without a registered buffer write through to the original
    stream, so concurrent requests and the test runner are unaffected.
    """

    def __init__(self, original):
        self.original = original
        self.buffers: Dict[int, io.StringIO] = {}

    def write(self, text):
        buffer = self.buffers.get(threading.get_ident())
        if buffer is None:
            return self.original.write(text)
        return buffer.write(text)

    def flush(self):
        if threading.get_ident() not in self.buffers:
            self.original.flush()


_stdout_lock = threading.Lock()
_stdout_proxy: Optional[_ThreadStdout] = None


def _capture_stdout() -> io.StringIO:
    global _stdout_proxy
    buffer = io.StringIO()
    with _stdout_lock:
        if _stdout_proxy is None or sys.stdout is not _stdout_proxy:
            _stdout_proxy = _ThreadStdout(sys.stdout)
            sys.stdout = _stdout_proxy
        _stdout_proxy.buffers[threading.get_ident()] = buffer
    return buffer


def _release_stdout() -> None:
    global _stdout_proxy
    with _stdout_lock:
        proxy = _stdout_proxy
        if proxy is None:
            return
        proxy.buffers.pop(threading.get_ident(), None)
        if not proxy.buffers and sys.stdout is proxy:
            sys.stdout = proxy.original
            _stdout_proxy = None


def _output_page(output: str) -> str:
    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        '<head>\n    <meta charset="UTF-8">\n    <title>Stream Output</title>\n</head>\n'
        '<body style="background: #18171B; color: white; font-family: monospace; padding: 20px;">\n'
        f"    <pre>{escape(output)}</pre>\n"
        "</body>\n"
        "</html>"
    )


def _run_callback(response, callback: Callable, sink: StreamSink) -> None:
    """Worker body: run the callback and translate its outcome into events."""
    request = response.request
    buffer = _capture_stdout()
    try:
        try:
            result = callback(response)
            output = buffer.getvalue()
            if output.strip():
                response.replace_document(_output_page(output))
            elif isinstance(result, StarRedirect):
                result.to_response()
            elif result is not None and getattr(result, "status_code", None) in (301, 302, 303, 307, 308):
                response.location(result["Location"])
        except StreamTerminated as e:
            logger.debug("Stream terminated: %s", e.reason)
        except StreamClosed:
            logger.debug("Client disconnected from stream on %s", request.path)
        except Exception as e:
            log_exception_safely(logger, e, "Uncaught exception in stream callback")
            try:
                response.replace_document(render_exception_page(request, e))
            except (StreamTerminated, StreamClosed):
                pass
    finally:
        _release_stdout()
        session = getattr(request, "session", None)
        if session is not None and session.modified:
            # SessionMiddleware already saved before the body was streamed
            try:
                session.save()
            except Exception as e:
                log_exception_safely(logger, e, "Could not save session after stream")
        connections.close_all()
        sink.finish()


def stream_events(response, callback: Callable, initial: Iterator[str]) -> Iterator[bytes]:
    """
    Generator backing the ``StreamingHttpResponse`` of a streamed response.

    Yields the events queued before ``stream()`` first, then switches the
    response to streaming mode and relays frames from the worker.
    """
    for frame in initial:
        yield frame.encode("utf-8")

    sink = StreamSink()
    response._start_streaming(sink)

    # Carry the request's active translation and timezone into the worker
    ctx = contextvars.copy_context()
    worker = threading.Thread(
        target=ctx.run,
        args=(_run_callback, response, callback, sink),
        name="djstar-stream",
        daemon=True,
    )
    worker.start()

    try:
        while True:
            try:
                frame = sink.queue.get(timeout=KEEPALIVE_TIMEOUT)
            except queue.Empty:
                yield sse_comment("keepalive").encode("utf-8")
                continue
            if frame is _SENTINEL:
                break
            yield frame.encode("utf-8")
    finally:
        # GeneratorExit on client disconnect lands here too
        sink.close()
