"""Attachment download endpoint."""
