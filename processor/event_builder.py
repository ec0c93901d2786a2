"""Construction of normalized Event values."""
from processor.models import Event


def _text(value) -> str:
    return '' if value is None else str(value)


def create_event(
    date=None,
    title=None,
    location='',
    is_all_day=False,
    start_time='',
    end_time='',
    travel_time='',
    repeat='',
    alarm='',
    attachment='',
    url='',
    badge='',
    description=None,
    priority=0,
) -> Event:
    """
    Build an Event, filling every missing field with its default.

    Never raises. A missing date or description comes through as an empty
    string and is dropped later by the validity filter.
    """
    try:
        priority = int(priority or 0)
    except (TypeError, ValueError):
        priority = 0

    return Event(
        date=_text(date),
        title=_text(title),
        description=_text(description),
        is_all_day=bool(is_all_day),
        start_time=_text(start_time),
        end_time=_text(end_time),
        location=_text(location),
        travel_time=_text(travel_time),
        repeat=_text(repeat),
        alarm=_text(alarm),
        attachment=_text(attachment),
        url=_text(url),
        badge=_text(badge),
        priority=priority,
    )
