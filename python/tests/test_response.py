"""
Tests for StarResponse: DOM patches, signal patches, scripts, URL updates
and navigation.
"""

import pytest
from django.http import HttpResponse

from djstar.context import get_context
from djstar.exceptions import InvalidNavigationError, NoFallbackResponseError, UrlAlreadySetError
from djstar.redirect import StarRedirect
from djstar.response import StarResponse, should_merge_by_default

from .helpers import (
    make_request,
    navigate_detail,
    parse_events,
    queued_events,
    script_of,
    signals_of,
    stream_text,
)


def responder(path="/", **kwargs):
    return StarResponse(make_request(path, **kwargs))


class TestDomPatches:
    @pytest.mark.parametrize("mode", ["append", "prepend", "replace", "before", "after", "inner", "outer"])
    def test_mode_helpers(self, mode):
        r = responder()
        getattr(r, mode)("#list", "<li>x</li>")
        assert queued_events(r) == [
            {
                "event": "datastar-patch-elements",
                "data": ["selector #list", f"mode {mode}", "elements <li>x</li>"],
            }
        ]

    def test_html_without_selector(self):
        r = responder()
        r.html('<div id="a">x</div>', use_view_transition=True)
        assert queued_events(r)[0]["data"] == ["useViewTransition true", 'elements <div id="a">x</div>']

    def test_remove(self):
        r = responder()
        r.remove("#item-3")
        assert queued_events(r)[0]["data"] == ["selector #item-3", "mode remove"]

    def test_events_keep_call_order(self):
        r = responder()
        r.append("#a", "<p>1</p>").signals(count=1).remove("#b")
        events = queued_events(r)
        assert [e["event"] for e in events] == [
            "datastar-patch-elements",
            "datastar-patch-signals",
            "datastar-patch-elements",
        ]

    def test_view(self):
        r = responder()
        r.view("counter.html", {"count": 4}, selector="#count", mode="outer")
        assert queued_events(r)[0]["data"] == [
            "selector #count",
            "mode outer",
            'elements <span id="count">4</span>',
        ]

    def test_fragment_from_child_template(self):
        r = responder()
        r.fragment("page.html", "counter", {"count": 4}, selector="#counter", mode="outer")
        assert script_of(queued_events(r)[0]) == '<span id="counter">4</span>'

    def test_fragment_from_parent_template(self):
        r = responder()
        r.fragment("page.html", "footer", {"note": "hi"})
        assert script_of(queued_events(r)[0]) == "<footer>hi</footer>"

    def test_fragments(self):
        r = responder()
        r.fragments(
            [
                {"template": "page.html", "block": "counter", "context": {"count": 1}},
                {
                    "template": "page.html",
                    "block": "footer",
                    "context": {"note": "n"},
                    "options": {"selector": "footer", "mode": "replace"},
                },
            ]
        )
        events = queued_events(r)
        assert len(events) == 2
        assert events[1]["data"][:2] == ["selector footer", "mode replace"]

    def test_missing_block(self):
        from django.template import TemplateSyntaxError

        with pytest.raises(TemplateSyntaxError):
            responder().fragment("page.html", "sidebar")


class TestSignals:
    def test_mapping(self):
        r = responder()
        r.signals({"count": 1, "name": "Ada"})
        assert queued_events(r)[0]["data"] == ['signals {"count":1,"name":"Ada"}']

    def test_name_value_and_keywords(self):
        r = responder()
        r.signals("count", 1).signals(open=True)
        events = queued_events(r)
        assert signals_of(events[0]) == {"count": 1}
        assert signals_of(events[1]) == {"open": True}

    def test_only_if_missing(self):
        r = responder()
        r.signals({"count": 0}, only_if_missing=True)
        assert queued_events(r)[0]["data"][0] == "onlyIfMissing true"

    def test_values_are_html_safe(self):
        r = responder()
        r.signals("message", "</script><b>")
        assert queued_events(r)[0]["data"] == ['signals {"message":"\\u003C/script\\u003E\\u003Cb\\u003E"}']

    def test_locked_signals_are_stored(self):
        r = responder()
        r.signals({"userId_": 42, "count": 1})
        assert get_context(r.request).store.stored_locked() == {"userId_": 42}
        assert signals_of(queued_events(r)[0]) == {"userId_": 42, "count": 1}

    def test_null_locked_signal_deleted_and_omitted(self):
        r = responder()
        r.signals({"userId_": 42})
        r.signals({"userId_": None, "count": 1})
        assert get_context(r.request).store.stored_locked() == {}
        assert signals_of(queued_events(r)[1]) == {"count": 1}

    def test_objects_are_converted(self):
        class Money:
            def to_dict(self):
                return {"amount": 5, "currency": "EUR"}

        r = responder()
        r.signals(price=Money())
        assert signals_of(queued_events(r)[0]) == {"price": {"amount": 5, "currency": "EUR"}}


class TestForget:
    def test_named_signals(self):
        r = responder()
        r.forget(["count", "errors"])
        assert signals_of(queued_events(r)[0]) == {"count": None, "errors": []}

    def test_single_name(self):
        r = responder()
        r.forget("count")
        assert signals_of(queued_events(r)[0]) == {"count": None}

    def test_all_submitted_signals(self):
        r = responder(signals={"count": 1, "name": "x"})
        r.forget()
        assert signals_of(queued_events(r)[0]) == {"count": None, "name": None}

    def test_locked_signals_purged(self):
        r = responder()
        r.signals({"userId_": 42})
        r.forget(["userId_", "count"])
        assert get_context(r.request).store.stored_locked() == {}
        assert signals_of(queued_events(r)[1]) == {"userId_": None, "count": None}

    def test_locked_signals_skipped(self):
        r = responder(signals={"count": 1, "userId_": 42})
        r.forget(include_locked=False)
        assert signals_of(queued_events(r)[0]) == {"count": None}


class TestScripts:
    def test_js(self):
        r = responder()
        r.js("console.log(1)")
        assert queued_events(r)[0]["data"] == [
            "selector body",
            "mode append",
            'elements <script data-effect="el.remove()">console.log(1)</script>',
        ]

    def test_js_without_auto_remove(self):
        r = responder()
        r.script("init()", auto_remove=False, attributes={"type": "module"})
        assert script_of(queued_events(r)[0]) == '<script type="module">init()</script>'

    def test_dispatch_on_window(self):
        r = responder()
        r.dispatch("post-created", {"id": 1})
        assert (
            'window.dispatchEvent(new CustomEvent("post-created", {detail: {"id":1}, '
            "bubbles: true, cancelable: true, composed: true}));"
        ) in script_of(queued_events(r)[0])

    def test_dispatch_on_selector(self):
        r = responder()
        r.dispatch("refresh", selector="#box", bubbles=False)
        script = script_of(queued_events(r)[0])
        assert 'document.querySelectorAll("#box")' in script
        assert "console.warn" in script
        assert "bubbles: false" in script

    def test_dispatch_on_body(self):
        r = responder()
        r.dispatch("saved", window=False)
        assert "document.body.dispatchEvent" in script_of(queued_events(r)[0])

    def test_dispatch_requires_event_name(self):
        with pytest.raises(ValueError):
            responder().dispatch("")

    def test_reload(self):
        r = responder()
        r.reload()
        assert "@reload()" in script_of(queued_events(r)[0])


class TestBrowserUrl:
    def test_push_url(self):
        r = responder()
        r.url("/users?page=2")
        script = script_of(queued_events(r)[0])
        assert "history.pushState(null,'',\"http://testserver/users?page=2\");" in script
        assert "console.warn('History API failed:',e);" in script

    def test_replace_url(self):
        r = responder()
        r.replace_url("/users")
        assert 'if("replace"===\'push\')' in script_of(queued_events(r)[0])

    def test_current_url_without_query(self):
        r = responder("/users?page=1")
        r.push_url()
        assert '"http://testserver/users"' in script_of(queued_events(r)[0])

    def test_query_mapping(self):
        r = responder("/users?page=1&sort=name")
        r.url({"page": 2, "sort": None})
        assert '"http://testserver/users?page=2"' in script_of(queued_events(r)[0])

    def test_route(self):
        r = responder()
        r.push_route("item-detail", kwargs={"pk": 5})
        assert '"http://testserver/items/5/"' in script_of(queued_events(r)[0])

    def test_replace_route(self):
        r = responder()
        r.replace_route("item-detail", kwargs={"pk": 7})
        script = script_of(queued_events(r)[0])
        assert '"http://testserver/items/7/"' in script
        assert '"replace"' in script

    def test_unknown_route(self):
        with pytest.raises(InvalidNavigationError):
            responder().route_url("no-such-route")

    def test_only_once_per_response(self):
        r = responder()
        r.url("/a")
        with pytest.raises(UrlAlreadySetError):
            r.url("/b")
        assert len(r.events) == 1

    @pytest.mark.parametrize(
        "url",
        ["https://evil.example/", "//evil.example/x", "javascript:alert(1)", "/path\nx"],
    )
    def test_unsafe_urls_rejected(self, url):
        r = responder()
        with pytest.raises(InvalidNavigationError):
            r.url(url)
        assert r.events == []

    def test_absolute_same_origin_url(self):
        r = responder()
        r.url("http://testserver/ok")
        assert '"http://testserver/ok"' in script_of(queued_events(r)[0])

    def test_invalid_mode(self):
        with pytest.raises(InvalidNavigationError):
            responder().url("/a", mode="assign")


class TestNavigate:
    def test_plain_path_does_not_merge(self):
        r = responder()
        r.navigate("/dashboard")
        detail = navigate_detail(queued_events(r)[0])
        assert detail["url"] == "/dashboard"
        assert detail["key"] == "true"
        assert detail["options"] == {"merge": False}
        assert isinstance(detail["timestamp"], float)

    def test_query_merges_by_default(self):
        r = responder()
        r.navigate("/search?q=ada", "results")
        detail = navigate_detail(queued_events(r)[0])
        assert detail["key"] == "results"
        assert detail["options"] == {"merge": True}

    def test_event_name(self):
        r = responder()
        r.navigate("/a")
        assert 'new CustomEvent("djstar:navigate", { detail: ' in script_of(queued_events(r)[0])

    def test_navigate_with(self):
        r = responder()
        r.navigate_with("/search?q=x", merge=False)
        assert navigate_detail(queued_events(r)[0])["options"] == {"merge": False}

    def test_navigate_merge_and_clean(self):
        merged = responder()
        merged.navigate_merge("/a")
        clean = responder()
        clean.navigate_clean("/a?b=1")
        assert navigate_detail(queued_events(merged)[0])["options"]["merge"] is True
        assert navigate_detail(queued_events(clean)[0])["options"]["merge"] is False

    def test_only(self):
        r = responder()
        r.navigate_only("/list?q=x", ["q"], key="list")
        assert navigate_detail(queued_events(r)[0])["options"] == {"merge": True, "only": ["q"]}

    def test_except(self):
        r = responder()
        r.navigate_except("/list", ["page"])
        assert navigate_detail(queued_events(r)[0])["options"] == {"merge": True, "except": ["page"]}

    def test_replace(self):
        r = responder()
        r.navigate_replace("/list")
        assert navigate_detail(queued_events(r)[0])["options"] == {"merge": False, "replace": True}

    def test_update_queries(self):
        r = responder("/items")
        r.update_queries({"status": "open", "tags": ["a", "b"], "empty": ""})
        detail = navigate_detail(queued_events(r)[0])
        assert detail["url"] == "/items?status=open&tags%5B%5D=a&tags%5B%5D=b"
        assert detail["key"] == "filters"
        assert detail["options"] == {"merge": True}

    def test_clear_queries(self):
        r = responder("/items")
        r.clear_queries(["status", "tags"])
        detail = navigate_detail(queued_events(r)[0])
        assert detail["url"] == "/items"
        assert detail["key"] == "clear"
        assert detail["options"] == {"merge": True}

    def test_reset_pagination(self):
        r = responder("/items")
        r.reset_pagination()
        detail = navigate_detail(queued_events(r)[0])
        assert detail["url"] == "/items?page=1"
        assert detail["key"] == "pagination"

    def test_route(self):
        r = responder()
        r.route("item-detail", kwargs={"pk": 3})
        detail = navigate_detail(queued_events(r)[0])
        assert detail["url"] == "http://testserver/items/3/"
        assert detail["key"] == "route"

    def test_back_to_same_origin_referer(self):
        r = responder("/items", headers={"Referer": "http://testserver/list?page=2"})
        r.back()
        detail = navigate_detail(queued_events(r)[0])
        assert detail["url"] == "http://testserver/list?page=2"
        assert detail["key"] == "back"
        assert detail["options"]["merge"] is True

    def test_back_ignores_foreign_referer(self):
        r = responder("/items", headers={"Referer": "https://evil.example/"})
        r.back("/home")
        assert navigate_detail(queued_events(r)[0])["url"] == "/home"

    def test_refresh(self):
        r = responder("/items?status=open")
        r.refresh()
        detail = navigate_detail(queued_events(r)[0])
        assert detail["url"] == "http://testserver/items?status=open"
        assert detail["key"] == "refresh"

    def test_cross_origin_rejected(self):
        with pytest.raises(InvalidNavigationError):
            responder().navigate("https://evil.example/")

    def test_shares_single_use_with_url(self):
        r = responder()
        r.url("/a")
        with pytest.raises(UrlAlreadySetError):
            r.navigate("/b")

    @pytest.mark.parametrize(
        "url,expected",
        [("/dashboard", False), ("/dashboard?search=john", True), ("?search=john", True)],
    )
    def test_merge_default(self, url, expected):
        assert should_merge_by_default(url) is expected


class TestConditionals:
    def test_when(self):
        r = responder()
        r.when(True, lambda s: s.signals(a=1)).when(False, lambda s: s.signals(b=1), lambda s: s.signals(c=1))
        assert [signals_of(e) for e in queued_events(r)] == [{"a": 1}, {"c": 1}]

    def test_when_with_callable_condition(self):
        r = responder()
        r.when(lambda s: s.is_datastar, lambda s: s.signals(a=1))
        assert len(r.events) == 1

    def test_unless(self):
        r = responder()
        r.unless(False, lambda s: s.signals(a=1))
        r.unless(lambda s: True, lambda s: s.signals(b=1))
        assert [signals_of(e) for e in queued_events(r)] == [{"a": 1}]

    def test_when_datastar(self):
        seen = []
        responder().when_datastar(lambda s: seen.append("star"), lambda s: seen.append("web"))
        responder(datastar=False).when_datastar(lambda s: seen.append("star"), lambda s: seen.append("web"))
        responder(datastar=False).when_not_datastar(lambda s: seen.append("plain"))
        assert seen == ["star", "web", "plain"]

    def test_when_navigate(self):
        headers = {"Djstar-Navigate": "true", "Djstar-Navigate-Key": "filters,sidebar"}
        seen = []
        r = responder(headers=headers)
        r.when_navigate(lambda s: seen.append("any"))
        r.when_navigate("sidebar", lambda s: seen.append("sidebar"))
        r.when_navigate(["main", "filters"], lambda s: seen.append("list"))
        r.when_navigate("main", lambda s: seen.append("main"), lambda s: seen.append("not-main"))
        responder().when_navigate(lambda s: seen.append("plain"), lambda s: seen.append("not-nav"))
        assert seen == ["any", "sidebar", "list", "not-main", "not-nav"]


class TestPlainRequests:
    def test_operations_are_noops(self):
        r = responder(datastar=False)
        r.append("#a", "<p></p>").signals(a=1).js("x()").url("/a").navigate("/b").dispatch("e")
        assert r.events == []
        assert not get_context(r.request).url_guard.url_set

    def test_without_fallback(self):
        with pytest.raises(NoFallbackResponseError):
            responder(datastar=False).signals(a=1).to_response()

    def test_fallback_response(self):
        page = HttpResponse("page")
        assert responder(datastar=False).web(page).to_response() is page

    def test_fallback_callable(self):
        response = responder(datastar=False).web(lambda: HttpResponse("lazy")).to_response()
        assert response.content == b"lazy"

    def test_view_as_fallback(self):
        r = responder(datastar=False)
        response = r.view("counter.html", {"count": 2}, web=True).to_response()
        assert b'<span id="count">2</span>' in response.content

    def test_fallback_ignored_for_datastar(self):
        response = responder().web(HttpResponse("page")).signals(a=1).to_response()
        assert response["Content-Type"] == "text/event-stream"


class TestFinalization:
    def test_response_headers_and_body(self):
        r = responder()
        r.signals(a=1).append("#l", "<li>1</li>")
        response = r.to_response()
        assert response.streaming
        assert response["Content-Type"] == "text/event-stream"
        assert response["Cache-Control"] == "no-cache"
        assert response["X-Djstar-Response"] == "true"
        events = parse_events(stream_text(response))
        assert [e["event"] for e in events] == ["datastar-patch-signals", "datastar-patch-elements"]

    def test_redirect_builder(self):
        r = responder()
        redirect = r.redirect("/done/")
        assert isinstance(redirect, StarRedirect)
        assert redirect.url == "/done/"

    def test_location(self):
        r = responder()
        r.location("/done/")
        assert queued_events(r)[0]["data"] == [
            "selector body",
            "mode append",
            'elements <script>window.location.href = "/done/";</script>',
        ]

    def test_location_rejects_script_urls(self):
        with pytest.raises(InvalidNavigationError):
            responder().location("javascript:alert(1)")

    def test_dump(self):
        r = responder()
        r.dump({"name": "<b>"})
        script = script_of(queued_events(r)[0])
        assert script.startswith("<script>document.open(); document.write(")
        assert "\\u0026lt;b\\u0026gt;" in script
        assert "<b>" not in script
