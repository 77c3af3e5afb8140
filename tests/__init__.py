"""Unit tests for the photoseal credential codec, pipelines and CLI."""
