"""Approved-client bookkeeping and the approval form shown before the broker redirect."""

from __future__ import annotations

import html
from typing import List, Mapping, Optional

from broker_gateway.services.token_cipher import TokenCipherService

APPROVAL_COOKIE_NAME = "mcp-approved-clients"
APPROVAL_COOKIE_MAX_AGE = 30 * 24 * 60 * 60


class ApprovalCookieService:
    """Track which outer clients the user approved, in an encrypted cookie."""

    def __init__(
        self,
        cipher: TokenCipherService,
        *,
        cookie_name: str = APPROVAL_COOKIE_NAME,
        max_age: int = APPROVAL_COOKIE_MAX_AGE,
    ) -> None:
        self._cipher = cipher
        self.cookie_name = cookie_name
        self.max_age = max_age

    def approved_clients(self, cookies: Mapping[str, str]) -> List[str]:
        raw = cookies.get(self.cookie_name)
        if not raw:
            return []
        try:
            value = self._cipher.unseal(raw, max_age=self.max_age)
        except ValueError:
            return []
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str)]

    def client_already_approved(self, cookies: Mapping[str, str], client_id: str) -> bool:
        return client_id in self.approved_clients(cookies)

    def approve(self, cookies: Mapping[str, str], client_id: str) -> str:
        """Return the new cookie value with ``client_id`` added."""
        approved = self.approved_clients(cookies)
        if client_id not in approved:
            approved.append(client_id)
        return self._cipher.seal(approved)


def render_approval_page(
    *,
    server_name: str,
    client_name: Optional[str],
    client_id: str,
    scope: List[str],
    encoded_state: str,
    action: str = "/authorize",
) -> str:
    """Render the consent form; the signed state travels in a hidden field."""
    name = html.escape(client_name or client_id)
    server = html.escape(server_name)
    scopes = "".join(f"<li>{html.escape(item)}</li>" for item in scope) or "<li>default</li>"
    return f"""<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><title>{server} | Authorization Request</title></head>
<body>
  <main>
    <h1>{server}</h1>
    <p><strong>{name}</strong> is requesting access to your brokerage account.</p>
    <ul>{scopes}</ul>
    <form method="post" action="{html.escape(action)}">
      <input type="hidden" name="state" value="{html.escape(encoded_state)}">
      <button type="button" onclick="window.history.back()">Cancel</button>
      <button type="submit">Approve</button>
    </form>
  </main>
</body>
</html>
"""


__all__ = [
    "APPROVAL_COOKIE_MAX_AGE",
    "APPROVAL_COOKIE_NAME",
    "ApprovalCookieService",
    "render_approval_page",
]
