"""
Render a single ``{% block %}`` of a Django template.

Lets a view patch one region of a page without re-rendering the whole
template::

    {% block counter %}<span id="counter">{{ count }}</span>{% endblock %}

    star(request).fragment("counter.html", "counter", {"count": 4})
"""

from typing import Any, Dict, Optional

from django.template import TemplateSyntaxError
from django.template.context import make_context
from django.template.loader import get_template
from django.template.loader_tags import BlockNode, ExtendsNode


def _find_block(template, block_name: str, context) -> Optional[BlockNode]:
    for node in template.nodelist.get_nodes_by_type(BlockNode):
        if node.name == block_name:
            return node

    # Blocks only defined by a parent template
    for extends in template.nodelist.get_nodes_by_type(ExtendsNode):
        parent = extends.get_parent(context)
        found = _find_block(parent, block_name, context)
        if found is not None:
            return found
    return None


def render_block(
    template_name: str,
    block_name: str,
    context: Optional[Dict[str, Any]] = None,
    request=None,
) -> str:
    """
    Render *block_name* of *template_name* with *context*.

    Raises:
        TemplateDoesNotExist: if the template cannot be loaded
        TemplateSyntaxError: if the template has no such block
    """
    backend_template = get_template(template_name)
    # Django backend wrapper around django.template.base.Template
    template = getattr(backend_template, "template", backend_template)

    ctx = make_context(context or {}, request, autoescape=template.engine.autoescape)
    with ctx.render_context.push_state(template):
        with ctx.bind_template(template):
            ctx.template_name = template.name
            block = _find_block(template, block_name, ctx)
            if block is None:
                raise TemplateSyntaxError(
                    f"Block '{block_name}' not found in template '{template_name}'"
                )
            return block.render(ctx)
