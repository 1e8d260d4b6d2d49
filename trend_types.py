"""Shared data types and errors for arxiv-trends."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


class Category(str, Enum):
    """Closed set of research topic labels assigned by the classifier."""

    FOUNDATION_MODELS = "Foundation Models"
    LLM_FINE_TUNING = "LLM Fine-tuning"
    PEFT = "Parameter-Efficient Fine-tuning (PEFT)"
    RAG = "Retrieval-Augmented Generation (RAG)"
    QUANTIZATION = "Model Quantization"
    AGENTS = "Agentic AI / AI Agents"
    MULTIMODALITY = "Multimodality"
    REINFORCEMENT_LEARNING = "Reinforcement Learning"
    COMPUTER_VISION = "Computer Vision (Specific Techniques)"
    NLP = "Natural Language Processing (Specific Techniques)"
    AI_SAFETY = "Ethical AI / AI Safety"
    EFFICIENT_AI = "Efficient AI / AI Optimization"
    DATA_CENTRIC = "Data-centric AI"
    OTHER = "Other"

    @classmethod
    def labels(cls) -> List[str]:
        return [member.value for member in cls]

    @classmethod
    def from_label(cls, label: str) -> "Category":
        """Look up a category by its exact label.

        Raises:
            ValueError: If label is not one of the 14 known categories
        """
        try:
            return cls(label)
        except ValueError:
            raise ValueError(f"Unknown category: {label!r}") from None


def new_run_id() -> str:
    """Generate an opaque identifier for one ingestion run."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Current time as naive UTC (the form every stored timestamp uses)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class RawPaper:
    """A paper record parsed from the arXiv feed."""

    arxiv_id: str  # version-stripped, e.g. "2401.00001"
    title: str
    summary: str
    authors: List[str]
    published: datetime
    categories: List[str]
    run_id: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Classification:
    """A validated topic classification for one paper.

    Construction rejects any value outside the classification contract.
    """

    primary_category: Category
    secondary_categories: tuple = ()
    potential_impact: int = 1

    def __post_init__(self):
        if not isinstance(self.primary_category, Category):
            raise ValueError(f"primary_category must be a Category, got {self.primary_category!r}")
        if len(self.secondary_categories) > 2:
            raise ValueError(
                f"At most 2 secondary categories allowed, got {len(self.secondary_categories)}"
            )
        for secondary in self.secondary_categories:
            if not isinstance(secondary, Category):
                raise ValueError(f"secondary category must be a Category, got {secondary!r}")
        impact = self.potential_impact
        if isinstance(impact, bool) or not isinstance(impact, int) or not 1 <= impact <= 5:
            raise ValueError(f"potential_impact must be an integer 1-5, got {impact!r}")

    def to_dict(self) -> dict:
        return {
            "primary_category": self.primary_category.value,
            "secondary_categories": [c.value for c in self.secondary_categories],
            "potential_impact": self.potential_impact,
        }


FALLBACK_CLASSIFICATION = Classification(
    primary_category=Category.OTHER,
    secondary_categories=(),
    potential_impact=1,
)


@dataclass
class ClassificationRecord:
    """A persisted classification row."""

    id: int
    arxiv_id: str
    run_id: str
    classification: Classification
    created_at: datetime


@dataclass
class ClassifiedPaper:
    """A classification joined with the raw paper fields it refers to."""

    arxiv_id: str
    title: str
    summary: str
    authors: List[str]
    published: datetime
    primary_category: Category
    secondary_categories: List[Category]
    potential_impact: int


@dataclass
class RepresentativePaper:
    arxiv_id: str
    title: str
    summary: str
    authors: List[str]
    published: datetime
    potential_impact: int

    def to_dict(self) -> dict:
        return {
            "arxiv_id": self.arxiv_id,
            "title": self.title,
            "summary": self.summary,
            "authors": list(self.authors),
            "published": self.published.isoformat(),
            "potential_impact": self.potential_impact,
        }


@dataclass
class TopicAggregation:
    primary_category: Category
    count: int
    representative_papers: List[RepresentativePaper] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "primary_category": self.primary_category.value,
            "count": self.count,
            "representative_papers": [p.to_dict() for p in self.representative_papers],
        }


@dataclass
class RenderedReport:
    subject: str
    body_markdown: str
    body_html: str


@dataclass
class StoredReport:
    """A persisted report row."""

    id: int
    run_id: str
    subject: str
    body_markdown: str
    body_html: str
    emailed: bool
    created_at: datetime


@dataclass
class LatestReport:
    subject: str
    body_html: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "subject": self.subject,
            "body_html": self.body_html,
            "created_at": self.created_at.isoformat(),
        }


class PipelineError(Exception):
    """Base error for failures that abort a pipeline operation."""

    stage = "pipeline"

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class FetchError(PipelineError):
    """The arXiv API call failed (network error or non-2xx status)."""

    stage = "fetch"


class ClassifierConfigError(PipelineError):
    """The classifier cannot run, e.g. no API key configured."""

    stage = "classify"


class ClassifierTransportError(PipelineError):
    """The LLM service returned an error or no completions."""

    stage = "classify"


class StorageIntegrityError(PipelineError):
    """A write violated a storage constraint; the whole batch was rolled back."""

    stage = "persistence"


class NoDataError(PipelineError):
    """A report was requested for a run with no classified papers."""

    stage = "report"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"No classified papers found for run_id: {run_id}")
