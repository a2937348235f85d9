"""External AI collaborators: transcription, line timing and text embedding."""
