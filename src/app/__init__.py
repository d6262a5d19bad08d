"""Document Submissions API."""
