"""Value model and data documents."""

from checkonaut.models.document import DataFormat, Document, load_document
from checkonaut.models.value import Value, to_value, value_type_name

__all__ = [
    "DataFormat",
    "Document",
    "load_document",
    "Value",
    "to_value",
    "value_type_name",
]
