"""
Lectern: retrieval-augmented question answering over personal knowledge.

Learners' quizzes, notes and documents are chunked, embedded and stored
per tenant; questions are answered from the most relevant pieces, with a
keyword and general-knowledge fallback and conversation memory.
"""

__version__ = "0.1.0"
