"""AWS Lambda handler for the lunar calendar ICS build."""
import json
import logging
import os
import time
from typing import Dict, Any

from fetcher.timeless_api import TimelessApiClient, date_range, proxies_from_env
from processor.event_processor import EventProcessor
from processor.flattener import reshape_documents
from processor.ics_encoder import ICSEncoder
from storage.s3_store import S3CalendarStore


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Create new handler with JSON formatter
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    # Set log level
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _error_response(message: str, error: Exception, start_time: float, **extra) -> Dict[str, Any]:
    body = {
        'message': message,
        'error': str(error),
        'error_type': type(error).__name__,
        'duration_seconds': round(time.time() - start_time, 2)
    }
    body.update(extra)
    return {'statusCode': 500, 'body': json.dumps(body, ensure_ascii=False)}


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Fetch missing source documents, rebuild the calendar and publish it.

    Args:
        event: EventBridge event payload, optionally carrying ``date``,
            ``start_date`` and ``force``
        context: Lambda context object

    Returns:
        Response dict with statusCode and summary statistics
    """
    # Read configuration from environment variables
    bucket_name = os.environ.get('BUCKET_NAME', 'lunar-calendar')
    data_prefix = os.environ.get('DATA_PREFIX', 'data/')
    calendar_key = os.environ.get('CALENDAR_KEY', 'calendar.ics')
    timezone = os.environ.get('CALENDAR_TIMEZONE', 'Asia/Shanghai')
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '30'))
    start_date_setting = os.environ.get('START_DATE', '')
    proxies = proxies_from_env(os.environ)

    # Initialize logging
    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    # Log Lambda execution start
    event = event or {}
    start_time = time.time()
    logger.info(
        "Lambda execution started",
        extra={
            'bucket_name': bucket_name,
            'calendar_key': calendar_key,
            'timezone': timezone
        }
    )

    try:
        # Instantiate components
        client = TimelessApiClient(timeout=timeout_seconds, proxies=proxies)
        processor = EventProcessor()
        encoder = ICSEncoder(timezone=timezone)
        store = S3CalendarStore(
            bucket_name=bucket_name,
            prefix=data_prefix,
            calendar_key=calendar_key
        )

        date_str = event.get('date') or client.today(timezone)
        start_date = event.get('start_date') or start_date_setting or date_str

        # Backfill every date from the start date that is not stored yet
        try:
            documents = store.load_documents()
            fetched_dates = []
            for day in date_range(start_date, date_str) or [date_str]:
                forced = event.get('force') and day == date_str
                if not forced and store.has_date(day, documents):
                    logger.info(f"Skipping fetch for {day}, data already stored")
                    continue
                raw_documents = client.fetch_documents(day)
                store.save_documents(reshape_documents(raw_documents, day))
                fetched_dates.append(day)
            if fetched_dates:
                documents = store.load_documents()
        except Exception as e:
            # Log storage/fetch errors and exit with error status
            logger.error(
                f"Error refreshing source documents: {str(e)}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return _error_response('Failed to refresh source documents', e, start_time)

        # Process and merge events
        merged_events = processor.process_documents(documents)
        if not merged_events:
            logger.warning("No valid events after filtering; calendar not generated")
            return {
                'statusCode': 200,
                'body': json.dumps({
                    'message': 'No valid events; calendar not generated',
                    'date': date_str,
                    'duration_seconds': round(time.time() - start_time, 2)
                })
            }

        result = encoder.build(merged_events)

        # Publish the calendar with error handling
        try:
            location = store.publish_calendar(result.ics_text)
        except Exception as e:
            # Log S3 errors; the previous calendar object is left untouched
            logger.error(
                f"Error publishing calendar: {str(e)}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return _error_response(
                'Failed to publish calendar', e, start_time,
                note='Previously published calendar remains in place'
            )

        # Calculate execution duration
        duration = time.time() - start_time

        # Log execution summary
        statistics = {
            'date': date_str,
            'fetched': bool(fetched_dates),
            'fetched_dates': fetched_dates,
            'merged_events': result.merged_events,
            'encoded_events': result.encoded_events,
            'skipped_events': result.skipped_events,
            'duration_seconds': round(duration, 2)
        }
        logger.info("Lambda execution completed successfully", extra=statistics)

        # Return success response
        return {
            'statusCode': 200,
            'body': json.dumps({
                'message': 'Calendar published successfully',
                'location': location,
                'statistics': statistics
            })
        }

    except Exception as e:
        # Calculate execution duration
        duration = time.time() - start_time

        # Log error
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        # Return error response
        return _error_response('Calendar build failed', e, start_time)
