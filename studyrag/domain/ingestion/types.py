from enum import Enum


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class DocType(str, Enum):
    LECTURE = "lecture"
    EXAM = "exam"
    ASSIGNMENT = "assignment"

    @property
    def yields_questions(self) -> bool:
        return self in {DocType.EXAM, DocType.ASSIGNMENT}


class IngestionStage(str, Enum):
    VALIDATING = "validating"
    QUOTA_CHECK = "quota_check"
    DUPLICATE_CHECK = "duplicate_check"
    DOCUMENT_CREATED = "document_created"
    PARSING_PDF = "parsing_pdf"
    EXTRACTING = "extracting"
    EMBEDDING = "embedding"
    COMPLETE = "complete"
    ERROR = "error"


STAGE_ORDER = (
    IngestionStage.VALIDATING,
    IngestionStage.QUOTA_CHECK,
    IngestionStage.DUPLICATE_CHECK,
    IngestionStage.DOCUMENT_CREATED,
    IngestionStage.PARSING_PDF,
    IngestionStage.EXTRACTING,
    IngestionStage.EMBEDDING,
    IngestionStage.COMPLETE,
)


class FileCheck(str, Enum):
    VALID = "valid"
    NOT_PDF_MIME = "not-pdf-mime"
    OVERSIZE = "oversize"
    BAD_MAGIC_BYTES = "bad-magic-bytes"


class SubscriptionTier(str, Enum):
    FREE = "free"
    PRO = "pro"
