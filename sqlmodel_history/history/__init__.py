"""Option resolution, schema derivation, association and revision writing for tracked models."""
