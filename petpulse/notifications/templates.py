"""Notification message templates.

Email bodies are self-contained HTML; SMS bodies are a short three-line text
with the description truncated to fit a single segment.
"""

from html import escape

SMS_DESCRIPTION_LIMIT = 50

EMAIL_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <style>
        body {{ font-family: 'Helvetica Neue', Helvetica, Arial, sans-serif; line-height: 1.6; color: #333; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 20px; border: 1px solid #ddd; border-radius: 8px; }}
        .header {{ background-color: #dfe6e9; padding: 15px; border-radius: 8px 8px 0 0; text-align: center; }}
        .header h1 {{ margin: 0; color: #2d3436; }}
        .alert-badge {{ background-color: {badge_color}; color: white; padding: 5px 10px; border-radius: 4px; font-weight: bold; display: inline-block; margin-top: 10px; }}
        .content {{ padding: 20px; }}
        .section {{ margin-bottom: 20px; }}
        .section h3 {{ border-bottom: 2px solid #eee; padding-bottom: 5px; color: #636e72; }}
        .button {{ display: inline-block; background-color: #0984e3; color: white; padding: 10px 20px; text-decoration: none; border-radius: 5px; font-weight: bold; }}
        .footer {{ margin-top: 30px; font-size: 12px; color: #b2bec3; text-align: center; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1>PetPulse {title}</h1>
            <div class="alert-badge">SEVERITY: {severity}</div>
        </div>
        <div class="content">
            <p><strong>Attention Required for {pet_name}</strong></p>
            <p>{description}</p>
            <p><strong>Time:</strong> {started_at}</p>
{sections}
            <div class="section" style="text-align: center; margin-top: 30px;">
                <a href="{video_link}" class="button">View Video Clip</a>
            </div>
        </div>
        <div class="footer">
            <p>Sent by PetPulse Autonomous Monitoring System</p>
        </div>
    </div>
</body>
</html>
"""

SECTION_TEMPLATE = """
            <div class="section">
                <h3>{heading}</h3>
                <ul>{items}</ul>
            </div>
"""


def _section(heading: str, items: list[str] | None) -> str:
    if not items:
        return ""
    rendered = "".join(f"<li>{escape(item)}</li>" for item in items)
    return SECTION_TEMPLATE.format(heading=heading, items=rendered)


def alert_email_subject(pet_name: str, severity: str) -> str:
    if severity.lower() == "critical":
        return f"CRITICAL ALERT: {pet_name} needs attention!"
    return f"PetPulse {severity.upper()} Alert: {pet_name} needs attention"


def alert_email_html(
    pet_name: str,
    severity: str,
    description: str,
    started_at: str,
    critical_indicators: list[str] | None,
    recommended_actions: list[str] | None,
    video_link: str,
) -> str:
    """Rich HTML email for an alert notification."""
    is_critical = severity.lower() == "critical"
    sections = _section("Critical Indicators Observed", critical_indicators) + _section(
        "Recommended Actions", recommended_actions
    )
    return EMAIL_TEMPLATE.format(
        title="Critical Alert" if is_critical else "Alert",
        badge_color="#d63031" if is_critical else "#e17055",
        severity=escape(severity.upper()),
        pet_name=escape(pet_name),
        description=escape(description),
        started_at=escape(started_at),
        sections=sections,
        video_link=escape(video_link, quote=True),
    )


def truncate_description(description: str, limit: int = SMS_DESCRIPTION_LIMIT) -> str:
    if len(description) > limit:
        return f"{description[: limit - 3]}..."
    return description


def alert_sms(pet_name: str, severity: str, description: str, video_link: str) -> str:
    """Concise SMS body for an alert notification."""
    return (
        f"PetPulse ALERT: {pet_name} - {truncate_description(description)}\n"
        f"Severity: {severity.upper()}\n"
        f"View: {video_link}"
    )
