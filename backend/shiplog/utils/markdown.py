"""
ShipLog — Markdown helpers for delivery channels.

Covers the subset the generators emit (headings, bold, inline code,
bullets, paragraphs). Input is HTML-escaped before markup is applied.
"""

import html
import re

_RULES = [
    (re.compile(r"^### (.+)$", re.MULTILINE), r'<h3 style="color: #102a43; margin-top: 16px;">\1</h3>'),
    (re.compile(r"^## (.+)$", re.MULTILINE), r'<h2 style="color: #102a43; margin-top: 20px;">\1</h2>'),
    (re.compile(r"^# (.+)$", re.MULTILINE), r'<h2 style="color: #102a43; margin-top: 20px;">\1</h2>'),
    (re.compile(r"\*\*(.+?)\*\*"), r"<strong>\1</strong>"),
    (re.compile(r"`(.+?)`"), r'<code style="background: #f0f4f8; padding: 2px 4px; border-radius: 4px;">\1</code>'),
    (re.compile(r"^[-*] (.+)$", re.MULTILINE), r'<li style="color: #334e68;">\1</li>'),
]


def truncate(text: str, max_length: int, marker: str) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + marker


def markdown_to_html(markdown: str) -> str:
    body = html.escape(markdown, quote=False)
    for pattern, replacement in _RULES:
        body = pattern.sub(replacement, body)
    return body.replace("\n\n", "<br/><br/>")


def render_email(markdown: str, repo_full_name: str, tag_name: str, release_url: str) -> str:
    """Wrap rendered notes in the branded email layout."""
    repo = html.escape(repo_full_name)
    tag = html.escape(tag_name)
    url = html.escape(release_url, quote=True)
    return f"""
    <div style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 600px; margin: 0 auto;">
      <div style="background: #102a43; padding: 24px; border-radius: 8px 8px 0 0;">
        <h1 style="color: white; margin: 0; font-size: 24px;">🚀 {tag}</h1>
        <p style="color: #9fb3c8; margin: 8px 0 0 0;">{repo}</p>
      </div>
      <div style="padding: 24px; border: 1px solid #e2e8f0; border-top: none; border-radius: 0 0 8px 8px;">
        {markdown_to_html(markdown)}
        <hr style="margin: 24px 0; border: none; border-top: 1px solid #e2e8f0;">
        <p style="color: #627d98; font-size: 14px;">
          <a href="{url}" style="color: #27ab83;">View on GitHub</a> •
          Powered by <a href="https://shiplog.io" style="color: #27ab83;">ShipLog</a>
        </p>
      </div>
    </div>
    """
