class EmbeddingBatchSize:
    DEFAULT = 100


class PdfUpload:
    ALLOWED_EXTENSIONS = frozenset({".pdf"})
    ALLOWED_CONTENT_TYPES = frozenset({"application/pdf", "application/octet-stream"})


class RetrievalText:
    """Sentinel strings returned by document retrieval in place of excerpts."""

    NO_DOCUMENT = "No PDF has been uploaded for this session. Please upload a PDF first."
    NOT_FOUND = (
        "I couldn't find relevant information in the provided PDF. "
        "Please try a different question."
    )
    OVERVIEW_HEADER = "Here's an overview of the PDF content:"


class UserMessages:
    RATE_LIMITED = "Too many requests, please try again later."
    MISSING_API_KEY = "API key not configured. Please set the LLM_API_KEY environment variable."
    INVALID_API_KEY = "The configured API key was rejected by the model provider."
    UPLOAD_FIRST = (
        "No PDF document found for this session. Please upload a PDF before asking questions."
    )
    RETRIEVAL_FAILED = "I couldn't search the uploaded PDF right now. Please try again."
    TOOL_FAILED = "A research tool failed while preparing the answer."
    UNEXPECTED = "An error occurred while processing your request."
