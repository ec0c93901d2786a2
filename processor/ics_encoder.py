"""iCalendar encoding of merged events."""
import hashlib
import logging
from datetime import datetime, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo

from icalendar import Calendar
from icalendar import Event as ICalEvent

from processor.models import BuildResult, MergedEvent

logger = logging.getLogger(__name__)


class ICSEncoder:
    """Encoder turning merged events into an iCalendar document."""

    PRODID = '-//lunar-calendar//EN'
    UID_DOMAIN = 'lunar-calendar'
    DEFAULT_TITLE = '日历事件'
    TIMED_DURATION = timedelta(hours=1)
    TIME_FORMATS = ['%H:%M:%S', '%H:%M']

    def __init__(self, timezone: str = 'Asia/Shanghai'):
        """
        Initialize the encoder.

        Args:
            timezone: IANA zone used as TZID for timed events
        """
        self.timezone = timezone
        self.tzinfo = ZoneInfo(timezone)

    def build_calendar(self, events: List[MergedEvent]) -> Calendar:
        """
        Build the calendar tree, skipping events that cannot be encoded.

        Args:
            events: Merged events in emission order

        Returns:
            icalendar Calendar holding one VEVENT per encodable event
        """
        calendar = Calendar()
        calendar.add('version', '2.0')
        calendar.add('calscale', 'GREGORIAN')
        calendar.add('method', 'PUBLISH')
        calendar.add('prodid', self.PRODID)

        for event in events:
            vevent = self._build_vevent(event)
            if vevent is not None:
                calendar.add_component(vevent)

        logger.info(
            f"Encoded {len(calendar.subcomponents)} of {len(events)} merged events"
        )
        return calendar

    def serialize(self, calendar: Calendar) -> str:
        """Render a calendar tree as text, keeping property insertion order."""
        return calendar.to_ical(sorted=False).decode('utf-8')

    def encode(self, events: List[MergedEvent]) -> str:
        """Serialize merged events to CRLF-delimited iCalendar text."""
        return self.serialize(self.build_calendar(events))

    def build(self, events: List[MergedEvent]) -> BuildResult:
        """
        Encode merged events and report how many made it into the calendar.

        Args:
            events: Merged events in emission order

        Returns:
            BuildResult with the calendar text and merged/encoded counts
        """
        calendar = self.build_calendar(events)
        return BuildResult(
            ics_text=self.serialize(calendar),
            merged_events=len(events),
            encoded_events=len(calendar.subcomponents),
        )

    def _build_vevent(self, event: MergedEvent) -> Optional[ICalEvent]:
        if not event.date:
            logger.warning(f"Event '{event.title}' has no date, skipping")
            return None

        try:
            day = datetime.strptime(event.date.strip(), '%Y-%m-%d').date()
        except ValueError:
            logger.warning(f"Invalid date for event '{event.title}': {event.date}")
            return None

        if event.is_all_day or not event.start_time:
            start = day
            end = day + timedelta(days=1)
        else:
            start_time = self._parse_time(event.start_time)
            if start_time is None:
                logger.warning(
                    f"Invalid start time for event '{event.title}': {event.start_time}"
                )
                return None
            start = datetime.combine(day, start_time, tzinfo=self.tzinfo)
            end = start + self.TIMED_DURATION

        vevent = ICalEvent()
        vevent.add('dtstart', start)
        vevent.add('dtend', end)
        vevent.add('summary', event.title.strip() or self.DEFAULT_TITLE)

        description = event.description.strip()
        if description:
            vevent.add('description', description)
        if event.location:
            vevent.add('location', event.location)
        if event.url:
            vevent.add('url', event.url)

        vevent.add('uid', self.generate_uid(event.merge_key or event.date))
        return vevent

    def _parse_time(self, time_str: str):
        for fmt in self.TIME_FORMATS:
            try:
                return datetime.strptime(time_str.strip(), fmt).time()
            except ValueError:
                continue
        return None

    def generate_uid(self, merge_key: str) -> str:
        """
        Generate a stable UID for a calendar slot.

        Args:
            merge_key: Merge key of the event

        Returns:
            SHA256 hex digest of the key qualified with the UID domain
        """
        digest = hashlib.sha256(merge_key.encode('utf-8')).hexdigest()
        return f"{digest}@{self.UID_DOMAIN}"
