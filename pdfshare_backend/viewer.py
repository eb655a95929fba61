"""Viewer shell served at /view/{id}.

The page frames the raw /file sub-resource and makes saving or printing a
little less convenient (no context menu, Ctrl/Cmd+S and Ctrl/Cmd+P swallowed,
no text selection). None of this is access control: anyone holding the link
can fetch the bytes directly.
"""
from __future__ import annotations

import html
import secrets
from dataclasses import dataclass
from urllib.parse import quote


@dataclass(frozen=True)
class ViewerPage:
    html: str
    content_security_policy: str


def build_content_security_policy(nonce: str) -> str:
    return (
        "default-src 'self'; "
        f"script-src 'nonce-{nonce}'; "
        f"style-src 'nonce-{nonce}'; "
        "object-src 'none'; "
        "base-uri 'none'; "
        "frame-ancestors 'none';"
    )


def render_viewer_page(artifact_id: str, token: str, title: str = "Secure PDF") -> ViewerPage:
    nonce = secrets.token_urlsafe(16)
    src = html.escape(f"../file/{quote(artifact_id, safe='-')}?t={quote(token, safe='')}", quote=True)
    page = f"""<!doctype html>
<html>
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width,initial-scale=1">
<title>{html.escape(title)}</title>
<style nonce="{nonce}">
body{{margin:0;height:100vh}}
iframe{{width:100%;height:100vh;border:0}}
.no-select{{user-select:none;-webkit-user-select:none;-ms-user-select:none}}
</style>
</head>
<body class="no-select">
<iframe src="{src}" allow="encrypted-media"></iframe>
<script nonce="{nonce}">
document.addEventListener('contextmenu', function (e) {{ e.preventDefault(); }});
document.addEventListener('keydown', function (e) {{
  if ((e.ctrlKey || e.metaKey) && ['s', 'p', 'S', 'P'].includes(e.key)) e.preventDefault();
  if (e.key === 'PrintScreen') e.preventDefault();
}});
</script>
</body>
</html>
"""
    return ViewerPage(html=page, content_security_policy=build_content_security_policy(nonce))
