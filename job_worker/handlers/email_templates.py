"""HTML bodies for transactional and onboarding emails."""

from dataclasses import dataclass
from html import escape
from typing import Optional

_LAYOUT = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;
           line-height: 1.6; color: #1a1a1a; max-width: 600px; margin: 0 auto; padding: 20px;
           background-color: #f9fafb; }}
    .container {{ background: white; border-radius: 12px; padding: 32px; }}
    h1 {{ color: #2d5a27; margin-top: 0; font-size: 24px; }}
    .cta-button {{ display: inline-block; background: #2d5a27; color: white !important;
                  padding: 12px 24px; text-decoration: none; border-radius: 8px; font-weight: 600; }}
    .footer {{ margin-top: 32px; padding-top: 16px; border-top: 1px solid #e5e7eb;
              color: #6b7280; font-size: 14px; }}
  </style>
</head>
<body>
  <div class="container">
    <h1>{title}</h1>
    <p>{greeting},</p>
{body}
    <p><a href="{cta_url}" class="cta-button">{cta_label}</a></p>
    <div class="footer">
      <p>Loam Logger</p>
      <p><a href="{unsubscribe_url}">Unsubscribe</a></p>
    </div>
  </div>
</body>
</html>
"""


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str


def _greeting(name: Optional[str]) -> str:
    return f"Hi {escape(name)}" if name else "Hi there"


def _paragraphs(*texts: str) -> str:
    return "\n".join(f"    <p>{text}</p>" for text in texts)


def _render(subject, title, name, body, cta_url, cta_label, unsubscribe_url) -> RenderedEmail:
    html = _LAYOUT.format(
        title=title,
        greeting=_greeting(name),
        body=body,
        cta_url=escape(cta_url, quote=True),
        cta_label=cta_label,
        unsubscribe_url=escape(unsubscribe_url, quote=True),
    )
    return RenderedEmail(subject=subject, html=html)


def render_activation(
    name: Optional[str],
    email: str,
    temp_password: str,
    login_url: str,
    unsubscribe_url: str,
) -> RenderedEmail:
    body = _paragraphs(
        "Your Loam Logger account is active.",
        f"Sign in with <strong>{escape(email)}</strong> and this temporary password: "
        f"<code>{escape(temp_password)}</code>",
        "You will be asked to choose a new password after your first login.",
    )
    return _render(
        "Welcome to Loam Logger: your access is ready",
        "Your access is ready",
        name, body, login_url, "Log in", unsubscribe_url,
    )


def render_welcome_1(name: Optional[str], dashboard_url: str, unsubscribe_url: str) -> RenderedEmail:
    body = _paragraphs(
        "When you log in for the first time, Loam Logger will ask you to add a bike. "
        "Everything else builds off of it.",
        "Adding the bike you ride most is enough to get started; details can come later.",
    )
    return _render(
        "A quick note as you get started",
        "Getting oriented",
        name, body, dashboard_url, "Open Loam Logger", unsubscribe_url,
    )


def render_welcome_2(name: Optional[str], gear_url: str, unsubscribe_url: str) -> RenderedEmail:
    body = _paragraphs(
        "Components wear at different rates. Add the parts you care about and "
        "Loam Logger tracks their hours for you.",
        "You'll get a nudge when something is due for service.",
    )
    return _render(
        "Pro tip: Track your component wear",
        "Track your component wear",
        name, body, gear_url, "Set up your gear", unsubscribe_url,
    )


def render_welcome_3(name: Optional[str], settings_url: str, unsubscribe_url: str) -> RenderedEmail:
    body = _paragraphs(
        "Connect Strava or Garmin and new rides show up on their own.",
        "You can also import past rides so your component hours start out right.",
    )
    return _render(
        "Sync your rides automatically",
        "Sync your rides automatically",
        name, body, settings_url, "Connect a service", unsubscribe_url,
    )
