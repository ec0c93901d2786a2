"""S3 storage for source documents and the published calendar."""
import json
import logging
from typing import Any, Dict, Iterable

import boto3
from botocore.exceptions import ClientError

from processor.models import SOURCE_NAMES

logger = logging.getLogger(__name__)


def deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge ``update`` into a copy of ``base``.

    Nested mappings merge recursively; any other value from ``update``
    replaces the stored one.
    """
    merged = dict(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class S3CalendarStore:
    """Manager for source documents and the calendar object in S3."""

    def __init__(
        self,
        bucket_name: str,
        prefix: str = 'data/',
        calendar_key: str = 'calendar.ics',
        sources: Iterable[str] = SOURCE_NAMES
    ):
        """
        Initialize S3 client and object layout.

        Args:
            bucket_name: Name of the S3 bucket
            prefix: Key prefix for per-source JSON documents
            calendar_key: Key of the published calendar
            sources: Known source names
        """
        self.bucket_name = bucket_name
        self.prefix = prefix
        self.calendar_key = calendar_key
        self.sources = tuple(sources)
        self.s3 = boto3.client('s3')
        logger.info(f"Initialized S3CalendarStore for bucket: {bucket_name}")

    def document_key(self, source: str) -> str:
        return f"{self.prefix}{source}.json"

    def load_document(self, source: str) -> Dict[str, Any]:
        """
        Load one source document.

        Args:
            source: Source name

        Returns:
            Stored mapping, or an empty dict when absent or malformed
        """
        key = self.document_key(source)
        try:
            response = self.s3.get_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in ('NoSuchKey', '404'):
                logger.warning(f"No stored document at s3://{self.bucket_name}/{key}")
                return {}
            logger.error(f"Error reading s3://{self.bucket_name}/{key}: {e}")
            raise

        try:
            document = json.loads(response['Body'].read().decode('utf-8'))
        except ValueError as e:
            logger.warning(f"Malformed JSON in s3://{self.bucket_name}/{key}: {e}")
            return {}

        if not isinstance(document, dict):
            logger.warning(f"Stored {source} document is not a JSON object, ignoring")
            return {}
        return document

    def load_documents(self) -> Dict[str, Dict[str, Any]]:
        """Load every known source document, keyed by source name."""
        documents = {source: self.load_document(source) for source in self.sources}
        logger.info(
            "Loaded documents: " + ', '.join(
                f"{source}={len(document)}" for source, document in documents.items()
            )
        )
        return documents

    def has_date(self, date_str: str, documents: Dict[str, Dict[str, Any]] = None) -> bool:
        """Check whether any stored source already holds ``date_str``."""
        if documents is None:
            documents = self.load_documents()
        return any(date_str in document for document in documents.values())

    def save_documents(self, new_documents: Dict[str, Dict[str, Any]]) -> int:
        """
        Merge new per-source documents into the stored ones.

        Args:
            new_documents: Mapping of source name to date-keyed document

        Returns:
            Count of documents written
        """
        written = 0
        for source, document in new_documents.items():
            if not document:
                continue
            merged = deep_merge(self.load_document(source), document)
            key = self.document_key(source)
            try:
                self.s3.put_object(
                    Bucket=self.bucket_name,
                    Key=key,
                    Body=json.dumps(merged, ensure_ascii=False, indent=2).encode('utf-8'),
                    ContentType='application/json'
                )
            except ClientError as e:
                logger.error(f"Error writing s3://{self.bucket_name}/{key}: {e}")
                raise
            logger.info(f"Saved {source} document with {len(merged)} dates")
            written += 1
        return written

    def publish_calendar(self, ics_text: str) -> str:
        """
        Upload the encoded calendar.

        Args:
            ics_text: iCalendar document

        Returns:
            S3 URI of the published object
        """
        uri = f"s3://{self.bucket_name}/{self.calendar_key}"
        try:
            self.s3.put_object(
                Bucket=self.bucket_name,
                Key=self.calendar_key,
                Body=ics_text.encode('utf-8'),
                ContentType='text/calendar; charset=utf-8'
            )
        except ClientError as e:
            logger.error(f"Error publishing calendar to {uri}: {e}")
            raise
        logger.info(f"Published calendar to {uri}")
        return uri
