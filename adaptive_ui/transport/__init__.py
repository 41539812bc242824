"""Live delivery of generated UI documents to devices."""
