"""
Template tags for djstar.

Usage:
    {% load djstar_tags %}

    <div {% data_signals count=0 userId_=user.pk %}>
        <span data-text="$count"></span>
    </div>

``data_signals`` renders the ``data-signals`` attribute for the initial
page render. Locked signals (``name_``) are sealed in the session at the
same time, so the values the page starts with are the values later
requests are checked against.
"""

from django import template
from django.utils.html import escape
from django.utils.safestring import mark_safe

from ..context import get_context
from ..serialization import convert_signals, dumps
from ..signal_store import extract_locked

register = template.Library()


@register.simple_tag(takes_context=True)
def data_signals(context, signals=None, **kwargs):
    """
    Render ``data-signals='{...}'`` from a mapping and/or keyword arguments.

    Example:
        {% data_signals initial count=0 %}
    """
    values = dict(signals or {})
    values.update(kwargs)
    values = convert_signals(values)

    request = context.get("request")
    locked = {name: value for name, value in extract_locked(values).items() if value is not None}
    if locked:
        if request is None:
            raise template.TemplateSyntaxError(
                "data_signals needs 'request' in the template context to store locked signals"
            )
        get_context(request).store.store_locked(locked)

    return mark_safe(f"data-signals='{escape(dumps(values))}'")
