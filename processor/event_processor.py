"""Event pipeline: collection, validation, deduplication and merging."""
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from processor.models import Event, MergedEvent
from processor.sources import DESCRIPTION_SEPARATOR, get_source_processors

logger = logging.getLogger(__name__)


class EventProcessor:
    """Reduce source documents to one merged event per calendar slot."""

    def __init__(self, year: Optional[int] = None):
        """
        Initialize the processor.

        Args:
            year: Year used to anchor astrological ranges (default: current)
        """
        self.year = year

    def process_documents(self, documents: Dict[str, Any]) -> List[MergedEvent]:
        """
        Run the full pipeline over loaded source documents.

        Args:
            documents: Mapping of source name to stored document

        Returns:
            Merged events in first-occurrence order of their merge key
        """
        events = self.collect_events(documents)
        return self.process_events(events)

    def collect_events(self, documents: Dict[str, Any]) -> List[Event]:
        """Concatenate every processor's events in source order."""
        events = []
        for source, processor in get_source_processors(self.year):
            document = documents.get(source) or {}
            try:
                source_events = processor(document)
            except Exception as e:
                logger.warning(f"Failed to process {source} document: {e}")
                continue
            logger.info(f"Collected {len(source_events)} events from {source}")
            events.extend(source_events)
        return events

    def process_events(self, events: List[Event]) -> List[MergedEvent]:
        """
        Default, filter and merge a sequence of events.

        Args:
            events: Events in collection order

        Returns:
            List of MergedEvent objects
        """
        events = [self.apply_defaults(event) for event in events]
        valid_events = self.filter_valid(events)

        # The merge pass consumes the validity-filtered sequence; the
        # dedup count is diagnostic only.
        deduplicated = self.deduplicate(valid_events)
        merged = self.merge_events(valid_events)

        logger.info(
            f"Processed {len(events)} events: {len(valid_events)} valid, "
            f"{len(valid_events) - len(deduplicated)} duplicate date/title pairs, "
            f"{len(merged)} merged"
        )
        return merged

    def apply_defaults(self, event: Event) -> Event:
        """Re-assert field defaults on an event."""
        return replace(
            event,
            date=event.date or '',
            title=event.title or '',
            description=event.description or '',
            start_time=event.start_time or '',
            end_time=event.end_time or '',
            priority=event.priority or 0,
        )

    @staticmethod
    def is_valid(event: Event) -> bool:
        return bool(event.date) and bool(event.description)

    def filter_valid(self, events: List[Event]) -> List[Event]:
        """Drop events with an empty date or description."""
        valid = [event for event in events if self.is_valid(event)]
        dropped = len(events) - len(valid)
        if dropped:
            logger.warning(f"Dropped {dropped} events missing date or description")
        return valid

    def deduplicate(self, events: List[Event]) -> List[Event]:
        """Keep the first event for each date and title pair."""
        seen = set()
        unique = []
        for event in events:
            if event.dedup_key in seen:
                continue
            seen.add(event.dedup_key)
            unique.append(event)
        return unique

    def merge_events(self, events: List[Event]) -> List[MergedEvent]:
        """
        Merge events sharing a merge key.

        Distinct non-empty titles are space-joined and distinct non-empty
        descriptions joined with the description separator, both in
        first-occurrence order. Date, start time and the all-day flag come
        from the first contributor.
        """
        groups: Dict[str, Dict[str, Any]] = {}
        for event in events:
            key = event.merge_key
            group = groups.get(key)
            if group is None:
                group = groups[key] = {
                    'first': event,
                    'titles': [],
                    'descriptions': [],
                    'location': '',
                    'url': '',
                    'badge': '',
                }
            title = event.title.strip()
            if title and title not in group['titles']:
                group['titles'].append(title)
            # Repeated snapshots of the same payload contribute one copy
            description = event.description.strip()
            if description and description not in group['descriptions']:
                group['descriptions'].append(description)
            for attr in ('location', 'url', 'badge'):
                if not group[attr]:
                    group[attr] = getattr(event, attr)

        merged = []
        for key, group in groups.items():
            first = group['first']
            merged.append(MergedEvent(
                merge_key=key,
                date=first.date,
                title=' '.join(group['titles']),
                description=DESCRIPTION_SEPARATOR.join(group['descriptions']),
                is_all_day=first.is_all_day,
                start_time=first.start_time,
                location=group['location'],
                url=group['url'],
                badge=group['badge'],
            ))
        return merged
