"""Artifact renderers: slide deck (python-pptx), PDF (reportlab) and JSON."""
