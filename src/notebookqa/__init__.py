"""notebookqa — self-learning retrieval-augmented question answering over notebooks."""

__version__ = "0.1.0"
