"""
TenderClarify — LLM-assisted clarification of construction tender documents.

Extracts text from tender PDFs, asks Claude for inconsistencies, ambiguities
and missing information, and drafts replies to the clarification questions
raised from them.
"""

__version__ = "1.0.0"
__author__ = "TenderClarify"
