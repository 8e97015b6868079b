"""
Default application handler.

A single-page app: ``GET /`` greets the visitor and names the edge location
that rendered the page, ``POST /`` greets whoever was entered in the form.
Deployments point ``APP_HANDLER`` at their own handler instead.
"""

import html
import logging
from typing import Any, Mapping, Optional

from .exceptions import MalformedBodyError
from .shims import ShimmedRequest, ShimmedResponse

logger = logging.getLogger(__name__)

HTML_CONTENT_TYPE = "text/html; charset=utf-8"

PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"><title>Edge Dispatcher</title></head>
  <body style="font-family: system-ui, sans-serif; line-height: 1.4">
    <h1 style="margin: 0">{heading}</h1>
{pop}{form}  </body>
</html>
"""

FORM = """    <div style="padding: 8px 0">
      <strong>Try a form:</strong>
      <form method="post" action="/">
        <label>Name: <input name="name" type="text" /></label>
        <button type="submit">Submit</button>
      </form>
    </div>
"""


def render_page(pop: Optional[str], name: Optional[str] = None) -> str:
    heading = (
        f"Nice to meet you, {html.escape(name)}!"
        if name is not None
        else "Hello from the edge"
    )
    pop_line = (
        f"    <small>your request was rendered in the {html.escape(pop)} datacenter</small>\n"
        if pop
        else ""
    )
    return PAGE_TEMPLATE.format(
        heading=heading, pop=pop_line, form="" if name is not None else FORM
    )


def _pop(load_context: Any) -> Optional[str]:
    if isinstance(load_context, Mapping):
        return load_context.get("pop")
    return None


async def handle_request(request: ShimmedRequest, load_context: Any) -> ShimmedResponse:
    if request.path != "/":
        return ShimmedResponse("Not Found", status=404)

    if request.method in ("GET", "HEAD"):
        return ShimmedResponse(
            render_page(_pop(load_context)),
            headers={"content-type": HTML_CONTENT_TYPE},
        )

    if request.method == "POST":
        try:
            form = await request.form_data()
        except MalformedBodyError as e:
            logger.info("Rejected undecodable form body", extra=e.to_dict())
            return ShimmedResponse("Bad Request", status=400)
        name = form.get("name", [""])[0]
        return ShimmedResponse(
            render_page(_pop(load_context), name),
            headers={"content-type": HTML_CONTENT_TYPE},
        )

    return ShimmedResponse(
        "Method Not Allowed", status=405, headers={"allow": "GET, HEAD, POST"}
    )
