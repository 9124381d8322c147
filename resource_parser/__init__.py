"""
Resource Parser
===============
PDF content extraction for resource-bank worksheets and exam papers.

Architecture:
    - Line Reconstructor: Groups positioned text runs into visual lines
    - Diagram Extractor: Walks the operator stream and stores painted images
    - Question Segmenter: Splits reconstructed lines into question records
    - Validator: Checks result invariants and summarizes the parse
    - Output: Immutable ParsedResult, serialized to camelCase JSON

Version: 1.0.0
"""

__version__ = "1.0.0"
