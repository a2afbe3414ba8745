from src.core.documents.models import DocumentPrefix, DocumentSequence
from src.core.documents.number_generator import DocumentNumberGenerator

__all__ = ["DocumentPrefix", "DocumentSequence", "DocumentNumberGenerator"]
