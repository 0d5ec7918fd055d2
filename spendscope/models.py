"""Data models for Spendscope."""

from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class SourceKind(str, Enum):
    """Which extraction path produced a piece of text."""

    STRUCTURED = "structured"
    OCR = "ocr"


class RawDocument(BaseModel):
    """An uploaded document, alive only for one extraction call."""

    content: bytes
    media_type: str = ""
    filename: str | None = None


class ExtractionResult(BaseModel):
    """Plain text pulled out of a document."""

    text: str
    source_kind: SourceKind
    confidence: float | None = None  # OCR only, 0-1


class ParsedEntry(BaseModel):
    """One recognized transaction line.

    ``value`` is always a non-negative magnitude; direction is carried by
    ``is_expense`` alone.
    """

    date: str
    value: float = Field(ge=0)
    is_expense: bool
    description: str = ""

    @property
    def signed(self) -> float:
        return -self.value if self.is_expense else self.value


class ParseOutcome(str, Enum):
    """State of a statement's parsed entries."""

    NOT_RUN = "not_run"  # extraction/parsing failed or never ran
    EMPTY = "empty"  # ran, recognized nothing
    POPULATED = "populated"


class ParsedStatementGroup(BaseModel):
    """Parsed entries of a single statement."""

    statement_id: str
    statement_name: str
    bank_id: str
    parsed: list[ParsedEntry] | None = None

    @property
    def outcome(self) -> ParseOutcome:
        if self.parsed is None:
            return ParseOutcome.NOT_RUN
        if not self.parsed:
            return ParseOutcome.EMPTY
        return ParseOutcome.POPULATED


class TopExpense(BaseModel):
    """Summed expenses for one description bucket."""

    desc: str
    amt: float


class AggregateSnapshot(BaseModel):
    """Derived dashboard metrics. Rebuilt on every request, never stored."""

    total_signed: float = 0.0
    total_income: float = 0.0
    total_expenses: float = 0.0
    biggest_expense: float = 0.0
    top_expenses: list[TopExpense] = Field(default_factory=list)
    running_balance: list[float] = Field(default_factory=list)


class Bank(BaseModel):
    """A bank or card account that statements are filed under."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    logo: str = "default"
    created_at: str  # ISO format datetime


class StatementRecord(BaseModel):
    """A stored statement as the storage layer sees it."""

    id: UUID = Field(default_factory=uuid4)
    bank_id: UUID
    name: str
    file_path: str
    media_type: str = ""
    upload_date: str  # ISO format datetime
    processed: bool = False
    raw_text: str | None = None
    parsed: list[ParsedEntry] | None = None
    last_error: str | None = None

    def to_group(self) -> ParsedStatementGroup:
        return ParsedStatementGroup(
            statement_id=str(self.id),
            statement_name=self.name,
            bank_id=str(self.bank_id),
            parsed=self.parsed,
        )


class BankCreate(BaseModel):
    """Bank creation request."""

    name: str = Field(min_length=1, max_length=25)
    logo: str = "default"


class BankUpdate(BaseModel):
    """Bank rename request."""

    name: str = Field(min_length=1, max_length=25)


class ProcessingOutcome(BaseModel):
    """Result of running extraction and parsing for one statement."""

    statement_id: str
    status: str  # "ok", "failed", "canceled" or "busy"
    outcome: ParseOutcome
    entries: int = 0
    error: str | None = None
    retryable: bool = False


class StatementUploadResponse(BaseModel):
    """Response after a statement upload."""

    statement: StatementRecord
    processing: ProcessingOutcome | None = None
    message: str
