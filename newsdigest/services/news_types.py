"""
News Types

Records that flow through the aggregation pipeline, plus the progress events
it emits. Wire names are camelCase to match what the frontend expects.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


def _coerce_text(value: Any) -> Any:
    """Model output is loosely typed: nulls become '' and scalars become strings"""
    if value is None:
        return ''
    if isinstance(value, (int, float, bool)):
        return str(value)
    return value


class RawEmail(BaseModel):
    """Metadata for one newsletter email"""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = ''
    subject: str = ''
    sender: str = ''
    date: str = ''
    email_url: str = Field(default='', alias='emailUrl')
    source: str = ''

    @field_validator('id', 'subject', 'sender', 'date', 'email_url', 'source', mode='before')
    @classmethod
    def _text_fields(cls, value: Any) -> Any:
        return _coerce_text(value)


class NewsItem(RawEmail):
    """One story extracted from an email (digests yield several)"""

    summary: str = ''
    original_email_id: Optional[str] = Field(default=None, alias='originalEmailId')

    @field_validator('summary', mode='before')
    @classmethod
    def _summary_text(cls, value: Any) -> Any:
        return _coerce_text(value)

    @field_validator('original_email_id', mode='before')
    @classmethod
    def _original_id_text(cls, value: Any) -> Any:
        if value is None:
            return None
        return _coerce_text(value)


class MergedNewsItem(BaseModel):
    """A deduplicated story, possibly synthesized from several sources"""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    subject: str
    date: str
    summary: str
    sources: List[str]
    email_urls: List[str] = Field(alias='emailUrls')
    original_items: List[NewsItem] = Field(alias='originalItems')


class AggregationStats(BaseModel):
    """How many items survived each stage"""

    model_config = ConfigDict(populate_by_name=True)

    emails_fetched: int = Field(default=0, alias='emailsFetched')
    stories_extracted: int = Field(default=0, alias='storiesExtracted')
    after_merge: int = Field(default=0, alias='afterMerge')
    displayed: int = 0


class EventType(str, Enum):
    """Progress event kinds"""
    STATUS = 'status'
    COMPLETE = 'complete'
    ERROR = 'error'


@dataclass
class ProgressEvent:
    """
    One progress notification from the pipeline

    status/error events carry `message`; the complete event carries
    `data = {'news': [...], 'stats': {...}}`.
    """
    type: EventType
    message: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def status(cls, message: str) -> 'ProgressEvent':
        return cls(EventType.STATUS, message=message)

    @classmethod
    def error(cls, message: str) -> 'ProgressEvent':
        return cls(EventType.ERROR, message=message)

    @classmethod
    def complete(cls, news: List[MergedNewsItem], stats: AggregationStats) -> 'ProgressEvent':
        return cls(EventType.COMPLETE, data={
            'news': [item.model_dump(by_alias=True) for item in news],
            'stats': stats.model_dump(by_alias=True)
        })

    @property
    def is_terminal(self) -> bool:
        return self.type in (EventType.COMPLETE, EventType.ERROR)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {'type': self.type.value}
        if self.type == EventType.COMPLETE:
            payload['data'] = self.data
        else:
            payload['message'] = self.message
        return payload

    def to_sse(self) -> str:
        """Render as a server-sent event frame"""
        return f'data: {json.dumps(self.to_dict(), ensure_ascii=False)}\n\n'
