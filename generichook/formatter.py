import html
import json
from typing import Any, Optional

import attr


@attr.dataclass
class HookMessage:
    plain: str
    html: Optional[str] = None
    msgtype: Optional[str] = None


def format_hook_data(data: Any) -> HookMessage:
    # Field names follow the Mattermost/Slack incoming webhook conventions.
    if isinstance(data, str):
        return HookMessage(plain=f"Received webhook data: {data}")
    safe = data if isinstance(data, dict) else {}

    msg = HookMessage(plain="")
    if isinstance(safe.get("text"), str):
        msg.plain = safe["text"]
    else:
        dumped = json.dumps(data, ensure_ascii=False, indent=2)
        msg.plain = f"Received webhook data:\n\n```json\n\n{dumped}\n\n```"
        msg.html = (
            "<p>Received webhook data:</p>"
            f'<p><pre><code class="language-json">{html.escape(dumped, quote=False)}</code></pre></p>'
        )

    if isinstance(safe.get("html"), str):
        msg.html = safe["html"]

    username = safe.get("username")
    if isinstance(username, str):
        msg.plain = f"**{username}**: {msg.plain}"
        if msg.html:
            msg.html = f"<strong>{html.escape(username)}</strong>: {msg.html}"
    return msg
