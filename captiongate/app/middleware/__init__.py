"""HTTP middleware for captiongate."""
