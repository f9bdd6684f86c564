"""Date and time formatting utilities."""

from datetime import datetime
from typing import Optional


def format_time_ago(moment: Optional[datetime], now: Optional[datetime] = None) -> str:
    """
    Format a timestamp relative to now.

    Args:
        moment: Time to format; None renders as an empty string
        now: Reference time (defaults to the current local time)

    Returns:
        "just now", "5 minutes ago", "1 hour ago", "3 days ago", or a date
        such as "Jan 2, 2006" for anything a week or older
    """
    if moment is None:
        return ""

    now = now or datetime.now()
    seconds = (now - moment).total_seconds()

    if seconds < 60:
        return "just now"
    if seconds < 3600:
        minutes = int(seconds // 60)
        return "1 minute ago" if minutes == 1 else f"{minutes} minutes ago"
    if seconds < 86400:
        hours = int(seconds // 3600)
        return "1 hour ago" if hours == 1 else f"{hours} hours ago"
    if seconds < 7 * 86400:
        days = int(seconds // 86400)
        return "1 day ago" if days == 1 else f"{days} days ago"
    return f"{moment.strftime('%b')} {moment.day}, {moment.year}"
