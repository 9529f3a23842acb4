"""
Helpers for building Datastar requests and reading event streams in tests.
"""

import json
import re

from django.contrib.sessions.backends.cache import SessionStore
from django.contrib.sessions.middleware import SessionMiddleware
from django.test import RequestFactory

DETAIL_RE = re.compile(r"detail: (\{.*\}) \}\)\)")


def add_session_to_request(request, session=None):
    """Attach *session*, or a fresh one, to *request*."""
    if session is None:
        middleware = SessionMiddleware(lambda x: None)
        middleware.process_request(request)
    else:
        request.session = session
    return request


def make_request(
    path="/",
    signals=None,
    datastar=True,
    method="get",
    session=None,
    headers=None,
    **extra,
):
    """
    Build a request the way the client runtime sends it.

    GET requests carry the signals in the ``datastar`` query parameter,
    other methods in a JSON body.
    """
    factory = RequestFactory()
    meta = dict(extra)
    if datastar:
        meta["HTTP_DATASTAR_REQUEST"] = "true"
    for name, value in (headers or {}).items():
        meta["HTTP_" + name.upper().replace("-", "_")] = value

    if method == "get":
        data = {"datastar": json.dumps(signals)} if signals is not None else {}
        request = factory.get(path, data, **meta)
    else:
        request = factory.generic(
            method.upper(),
            path,
            json.dumps(signals if signals is not None else {}),
            content_type="application/json",
            **meta,
        )
    return add_session_to_request(request, session)


def new_session():
    return SessionStore()


def parse_events(text):
    """Split an event stream into ``{"event": ..., "data": [...]}`` dicts."""
    events = []
    for block in text.split("\n\n"):
        if not block.strip() or block.startswith(":"):
            continue
        lines = block.split("\n")
        events.append(
            {
                "event": lines[0][len("event: "):],
                "data": [line[len("data: "):] for line in lines[1:]],
            }
        )
    return events


def queued_events(star):
    return parse_events("".join(star.events))


def stream_text(response):
    return b"".join(response.streaming_content).decode("utf-8")


def signals_of(event):
    """Decode the JSON payload of a ``patch-signals`` event."""
    payload = "\n".join(
        line[len("signals "):] for line in event["data"] if line.startswith("signals ")
    )
    return json.loads(payload)


def script_of(event):
    """Joined ``elements`` lines of a ``patch-elements`` event."""
    return "\n".join(
        line[len("elements "):] for line in event["data"] if line.startswith("elements ")
    )


def navigate_detail(event):
    match = DETAIL_RE.search(script_of(event))
    assert match, script_of(event)
    return json.loads(match.group(1))
