"""Retrieval corpus, prompt assembly and the generation conversation."""
