"""Media catalog administration backoffice."""
