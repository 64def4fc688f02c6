"""Language-model and embedding access for koso."""

from koso.llm.client import EmbeddingClient, complete, stream_complete, validate_api_key
from koso.llm.decode import Decoded, decode_json, strip_code_fences

__all__ = [
    "Decoded",
    "EmbeddingClient",
    "complete",
    "decode_json",
    "stream_complete",
    "strip_code_fences",
    "validate_api_key",
]
