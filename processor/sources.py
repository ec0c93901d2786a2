"""Per-source processors mapping stored documents to Events."""
import json
import logging
import re
from datetime import date, datetime, timedelta
from functools import partial
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from processor.event_builder import create_event
from processor.flattener import iter_payloads
from processor.models import AlmanacRecord, Event

logger = logging.getLogger(__name__)

DESCRIPTION_SEPARATOR = ' | '
SOLAR_TERM_LABEL = '节气'
OFF_DAY_BADGE = '休'
WORK_DAY_BADGE = '班'

RANGE_PATTERN = re.compile(
    r'^\s*(\d{1,2})\.(\d{1,2})\s*-\s*(\d{1,2})\.(\d{1,2})\s*$'
)

# Daily-almanac attributes contributing to the description, in order
ALMANAC_DESCRIPTION_FIELDS = [
    'cn_year',
    'cn_month',
    'cn_day',
    'cyclical_year',
    'cyclical_month',
    'cyclical_day',
    'zodiac',
    'yuexiang',
    'wuhou',
    'yi',
    'ji',
    'chong',
    'sha',
    'na_yin',
    'shiershen',
    'xingxiu',
]
ALMANAC_SCALAR_FIELDS = ['liuyao', 'jiuxing', 'taisui']


def stringify(value: Any) -> str:
    """Render a field value for a description; empty containers become ''."""
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return ','.join(stringify(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False) if value else ''
    return str(value)


def join_description(values) -> str:
    """Join the non-empty renderings of ``values`` with the separator."""
    parts = [stringify(value).strip() for value in values]
    return DESCRIPTION_SEPARATOR.join(
        part for part in parts if part and part != '{}'
    )


def _records(payload: Any, marker: str) -> Iterator[Dict[str, Any]]:
    """Yield record mappings from a payload that may be a list or a mapping."""
    if isinstance(payload, list):
        for item in payload:
            yield from _records(item, marker)
    elif isinstance(payload, dict):
        if marker in payload or not any(
            isinstance(value, (dict, list)) for value in payload.values()
        ):
            yield payload
        else:
            for value in payload.values():
                if isinstance(value, (dict, list)):
                    yield from _records(value, marker)


def process_solar_terms(document: Any) -> List[Event]:
    """
    Map solar-term records to timed events.

    Args:
        document: Stored jieqi document

    Returns:
        One event per record carrying a ``YYYY-MM-DD HH:mm:ss`` time
    """
    events = []
    for payload in iter_payloads(document):
        for record in _records(payload, 'time'):
            moment = record.get('time')
            name = stringify(record.get('name'))
            if not isinstance(moment, str) or ' ' not in moment.strip():
                logger.warning(f"Solar term '{name}' has no usable time, skipping")
                continue
            event_date, event_time = moment.strip().split(' ', 1)
            events.append(create_event(
                date=event_date,
                title=name,
                is_all_day=False,
                start_time=event_time.strip(),
                description=f"{SOLAR_TERM_LABEL}: {name}",
            ))
    return events


def process_holidays(document: Any) -> List[Event]:
    """
    Map holiday records to all-day events badged off-day or work-day.

    Records missing ``date``, ``name`` or a boolean ``isOffDay`` are skipped.
    """
    events = []
    for payload in iter_payloads(document):
        for record in _records(payload, 'date'):
            if not record.get('date') or not record.get('name') \
                    or not isinstance(record.get('isOffDay'), bool):
                logger.warning(f"Holiday record missing required fields: {record}")
                continue
            description = DESCRIPTION_SEPARATOR.join(
                f"{key}: {stringify(value)}"
                for key, value in record.items()
                if key != 'date'
            )
            events.append(create_event(
                date=record['date'],
                title=record['name'],
                is_all_day=True,
                badge=OFF_DAY_BADGE if record['isOffDay'] else WORK_DAY_BADGE,
                description=description,
            ))
    return events


def parse_range(text: str, year: int) -> Optional[Tuple[date, date]]:
    """
    Parse an ``M.D-M.D`` range against ``year``.

    A range whose end precedes its start ends in the following year.
    Returns None when the text or either day is invalid.
    """
    match = RANGE_PATTERN.match(text or '')
    if not match:
        return None
    start_month, start_day, end_month, end_day = (int(part) for part in match.groups())
    try:
        start = date(year, start_month, start_day)
        end = date(year, end_month, end_day)
        if end < start:
            end = date(year + 1, end_month, end_day)
    except ValueError:
        return None
    return start, end


def process_astrology(document: Any, year: Optional[int] = None) -> List[Event]:
    """Expand each astrological range into one all-day event per day."""
    if year is None:
        year = datetime.now().year

    events = []
    for payload in iter_payloads(document):
        for record in _records(payload, 'range'):
            bounds = parse_range(stringify(record.get('range')), year)
            if bounds is None:
                logger.warning(
                    f"Astrological record has invalid range: {record.get('range')!r}"
                )
                continue
            description = join_description(
                value for key, value in record.items() if key != 'range'
            )
            current, end = bounds
            while current <= end:
                events.append(create_event(
                    date=current.strftime('%Y-%m-%d'),
                    title='',
                    is_all_day=True,
                    description=description,
                ))
                current += timedelta(days=1)
    return events


def _almanac_entries(document: Any) -> Iterator[Tuple[str, Dict[str, Any]]]:
    if not isinstance(document, dict):
        return
    for date_key in sorted(document):
        entry = document[date_key]
        if not isinstance(entry, dict):
            continue
        if 'Reconstruction' not in entry:
            yield date_key, entry
            continue
        for envelope in entry.get('Reconstruction') or []:
            data = envelope.get('data') if isinstance(envelope, dict) else None
            if isinstance(data, dict):
                data = [data]
            for record in data or []:
                if isinstance(record, dict):
                    yield date_key, record


def process_almanac(document: Any) -> List[Event]:
    """
    Map flattened daily-almanac records to all-day events.

    The title is the festivals string; the description joins the named
    lunar fields, the positional-deity values, the three almanac scalars
    and the pengzu taboos.
    """
    events = []
    for date_key, entry in _almanac_entries(document):
        if not entry:
            continue
        record = AlmanacRecord.from_dict(entry)
        values = [getattr(record, attr) for attr in ALMANAC_DESCRIPTION_FIELDS]
        values.extend(record.positions.values())
        values.extend(getattr(record, attr) for attr in ALMANAC_SCALAR_FIELDS)
        values.append(record.pengzubaiji)

        events.append(create_event(
            date=record.date or date_key,
            title=record.festivals,
            is_all_day=True,
            description=join_description(values),
        ))
    return events


def process_hour_branches(document: Any) -> List[Event]:
    """Hour-branch data is stored for reference only and yields no events."""
    logger.debug(f"Hour-branch document holds {len(iter_payloads(document))} payloads")
    return []


def get_source_processors(year: Optional[int] = None) -> List[Tuple[str, Callable]]:
    """Processors in their fixed iteration order, keyed by source name."""
    return [
        ('calendar', process_almanac),
        ('astro', partial(process_astrology, year=year)),
        ('shichen', process_hour_branches),
        ('jieqi', process_solar_terms),
        ('holidays', process_holidays),
    ]
